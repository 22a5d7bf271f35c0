"""GitHub Explorer - scheduled pipelines for GitHub activity data and sitemaps."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("github-explorer")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for development without install
