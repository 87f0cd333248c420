"""crawlcore: crawl scheduling and execution core."""

__version__ = "0.1.0"
