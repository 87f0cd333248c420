"""Exception hierarchy for the crawl core."""

from typing import Optional


class CrawlError(Exception):
    """Base class for all crawler errors."""


class PersistenceError(CrawlError):
    """WAL or snapshot storage failed.

    A mutation that raised this error must not be treated as durable.
    """


class StateError(CrawlError):
    """A structure was used in a state that violates its contract."""


class RoutingError(CrawlError):
    """No route matched a task, or route hops could not be followed."""


class FetchError(CrawlError):
    """Transient or permanent failure while fetching a URL."""

    def __init__(self, message: str, url: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class ParseError(CrawlError):
    """A fetched body could not be parsed."""


class ConfigurationError(CrawlError):
    """Crawler wiring or configuration is invalid."""
