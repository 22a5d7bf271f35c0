"""Sitemap generation pipeline.

EntityFetch -> SitemapGeneration -> SitemapIndex. Page files are written to
``{output_dir}/sitemaps/`` and referenced from ``{output_dir}/sitemap.xml``.
"""
