"""Staged data pipelines for GitHub Explorer.

github_sync -> entity_extraction -> data_enrichment -> contributor_rankings
sitemap_generation publishes the resulting entities as sitemap files.
"""
