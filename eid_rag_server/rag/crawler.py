"""Web crawler primitives: bounded page fetching and the BFS frontier."""

import logging
from collections import deque
from typing import Callable, Iterable

import requests
from bs4.dammit import EncodingDetector

logger = logging.getLogger(__name__)

# Default user agent for crawling
DEFAULT_USER_AGENT = "Eid-RAG-Bot/0.1"


class PageTooLargeError(ValueError):
    """Response body exceeded the configured size cap."""


def decode_html(body: bytes, content_type: str, header_encoding: str | None = None) -> str:
    """Decode an HTML body, preferring the header charset, then the <meta> charset, then UTF-8.

    requests reports ISO-8859-1 for any text/* response without a charset,
    so its encoding is only used when the Content-Type header names one.
    """
    encoding = None
    if header_encoding and "charset=" in content_type.lower():
        encoding = header_encoding
    if not encoding:
        encoding = EncodingDetector.find_declared_encoding(body, is_html=True)

    try:
        return body.decode(encoding or "utf-8", errors="replace")
    except LookupError:
        logger.debug(f"[CRAWLER] Unknown charset {encoding!r}, decoding as UTF-8")
        return body.decode("utf-8", errors="replace")


class DocumentCrawler:
    """Fetches HTML pages from trusted sites with a timeout and a size cap."""

    def __init__(
        self,
        is_allowed: Callable[[str], bool],
        request_timeout: float = 20.0,
        max_content_bytes: int = 2_000_000,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        """Initialize the document crawler.

        Args:
            is_allowed: Predicate for URLs the crawler may end up on (checked after redirects)
            request_timeout: HTTP request timeout in seconds
            max_content_bytes: Largest response body accepted
            user_agent: User agent string for requests
        """
        self.is_allowed = is_allowed
        self.request_timeout = request_timeout
        self.max_content_bytes = max_content_bytes
        self.user_agent = user_agent

    def fetch_page(self, url: str) -> str | None:
        """Fetch a single page and return its HTML.

        Args:
            url: URL to fetch

        Returns:
            HTML content or None if the fetch failed or was rejected
        """
        try:
            logger.debug(f"[CRAWLER] Fetching: {url}")
            response = requests.get(
                url,
                headers={"User-Agent": self.user_agent, "Accept": "text/html,application/xhtml+xml"},
                timeout=self.request_timeout,
                stream=True,
            )
            try:
                response.raise_for_status()

                # Verify final URL is still within the trusted domains (blocks redirects to external sites)
                final_url = response.url or url
                if not self.is_allowed(final_url):
                    logger.warning(f"[CRAWLER] Redirect to external domain blocked: {url} -> {final_url}")
                    return None

                content_type = response.headers.get("content-type", "")
                if "html" not in content_type:
                    logger.warning(f"[CRAWLER] Skipping non-HTML content: {url} ({content_type})")
                    return None

                return self._read_body(response)
            finally:
                response.close()

        except Exception as e:
            logger.warning(f"[CRAWLER] Failed to fetch {url}: {e}")
            return None

    def _read_body(self, response: requests.Response) -> str:
        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self.max_content_bytes:
            raise PageTooLargeError(f"content-length {declared} exceeds {self.max_content_bytes} bytes")

        body = bytearray()
        for block in response.iter_content(chunk_size=64 * 1024):
            body.extend(block)
            if len(body) > self.max_content_bytes:
                raise PageTooLargeError(f"response exceeds {self.max_content_bytes} bytes")

        return decode_html(bytes(body), response.headers.get("content-type", ""), response.encoding)


class CrawlFrontier:
    """FIFO queue of URLs to visit plus the set of every URL ever queued.

    ``max_size`` caps the seen set, which bounds memory no matter how many
    links the crawled pages fan out to.
    """

    def __init__(self, seeds: Iterable[str] = (), max_size: int | None = None):
        self.max_size = max_size
        self._queue: deque[str] = deque()
        self._seen: set[str] = set()
        for url in seeds:
            if url not in self._seen:
                self._seen.add(url)
                self._queue.append(url)

    def __len__(self) -> int:
        return len(self._queue)

    def __bool__(self) -> bool:
        return bool(self._queue)

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    def push(self, url: str) -> bool:
        """Queue a URL unless it was seen before or the cap is reached."""
        if url in self._seen:
            return False
        if self.max_size is not None and len(self._seen) >= self.max_size:
            return False
        self._seen.add(url)
        self._queue.append(url)
        return True

    def pop(self) -> str:
        return self._queue.popleft()
