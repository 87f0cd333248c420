"""HTTP fetcher built on httpx."""

import threading
from typing import Optional, Protocol

import httpx

from crawlcore.errors import FetchError
from crawlcore.models.data_models import FetchRequest, FetchResult


class Fetcher(Protocol):
    """Fetches one URL. May raise FetchError for transient I/O problems."""

    def fetch(self, request: FetchRequest) -> FetchResult:
        ...


class HTTPFetcher:
    """
    Fetcher wrapper around httpx.Client.

    Provides:
    - Configurable connect and read timeouts
    - Connection pooling shared by all worker threads
    - Context manager for proper lifecycle management
    """

    def __init__(
        self,
        connect_timeout: float = 3.0,
        read_timeout: float = 8.0,
        write_timeout: float = 5.0,
        pool_timeout: float = 5.0,
        user_agent: str = "crawlcore/1.0",
        follow_redirects: bool = True,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize HTTP fetcher.

        Args:
            connect_timeout: Connection timeout in seconds
            read_timeout: Read timeout in seconds
            write_timeout: Write timeout in seconds
            pool_timeout: Pool timeout in seconds
            user_agent: User-Agent header sent with every request
            follow_redirects: Follow 3xx responses to their final URL
            transport: Optional custom transport (e.g. httpx.MockTransport in tests)
        """
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout
        self.pool_timeout = pool_timeout
        self.user_agent = user_agent
        self.follow_redirects = follow_redirects
        self._transport = transport
        self._client: Optional[httpx.Client] = None
        self._lock = threading.Lock()

    def __enter__(self):
        self._ensure_client()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _ensure_client(self) -> httpx.Client:
        with self._lock:
            if self._client is None:
                timeout = httpx.Timeout(
                    connect=self.connect_timeout,
                    read=self.read_timeout,
                    write=self.write_timeout,
                    pool=self.pool_timeout
                )
                self._client = httpx.Client(
                    timeout=timeout,
                    headers={"User-Agent": self.user_agent},
                    follow_redirects=self.follow_redirects,
                    transport=self._transport,
                )
            return self._client

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def fetch(self, request: FetchRequest) -> FetchResult:
        """
        Perform GET request.

        Args:
            request: URL and extra headers to send

        Returns:
            FetchResult with final URL, status, headers, body and bare content type

        Raises:
            FetchError: On timeouts and transport errors
        """
        client = self._ensure_client()
        try:
            response = client.get(request.url, headers=request.headers or None)
        except httpx.TimeoutException as e:
            raise FetchError(f"Timeout fetching {request.url}", url=request.url) from e
        except httpx.HTTPError as e:
            raise FetchError(f"Error fetching {request.url}: {e}", url=request.url) from e

        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        return FetchResult(
            final_url=str(response.url),
            status=response.status_code,
            headers=dict(response.headers),
            body=response.content,
            content_type=content_type,
        )
