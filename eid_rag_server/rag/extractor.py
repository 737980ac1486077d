"""HTML text and link extraction for crawled pages."""

from dataclasses import dataclass, field
from typing import Callable
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

# Pages shorter than this are not worth indexing
MIN_PAGE_CHARS = 500
# Ad-hoc answering accepts thinner pages
MIN_ADHOC_PAGE_CHARS = 200

STRIPPED_ELEMENTS = ["script", "style", "nav", "header", "footer", "noscript"]
TRACKING_PARAMS = {"utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content", "fbclid", "gclid"}


@dataclass
class ExtractedPage:
    title: str
    text: str
    links: list[str] = field(default_factory=list)


def normalize_host(host: str | None) -> str:
    """Lower-case a host name and drop a leading ``www.``."""
    host = str(host or "").lower()
    return host[4:] if host.startswith("www.") else host


def normalize_url(url: str) -> str | None:
    """Normalize URL by removing the fragment and tracking query params.

    Args:
        url: Absolute URL

    Returns:
        Normalized URL, or None when the URL cannot be parsed
    """
    try:
        parsed = urlparse(str(url).strip())
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None

    pairs = parse_qsl(parsed.query, keep_blank_values=True)
    query = parsed.query
    if any(key in TRACKING_PARAMS for key, _ in pairs):
        query = urlencode([(key, value) for key, value in pairs if key not in TRACKING_PARAMS])
    path = parsed.path or "/"
    return urlunparse((parsed.scheme.lower(), parsed.netloc.lower(), path, parsed.params, query, ""))


def make_allowed_url_checker(allowed_domains: list[str]) -> Callable[[str], bool]:
    """Build a predicate accepting http(s) URLs whose host is in ``allowed_domains``."""
    allowed = {normalize_host(domain) for domain in allowed_domains or []}

    def is_allowed(url: str) -> bool:
        try:
            parsed = urlparse(str(url))
        except ValueError:
            return False
        if parsed.scheme not in ("http", "https"):
            return False
        return normalize_host(parsed.hostname) in allowed

    return is_allowed


def extract_page(html: str, base_url: str, is_in_scope: Callable[[str], bool]) -> ExtractedPage:
    """Extract title, plain body text and in-scope links from raw HTML.

    Args:
        html: Raw HTML content
        base_url: URL the HTML was fetched from (relative links resolve against it)
        is_in_scope: Predicate deciding which links are kept

    Returns:
        ExtractedPage with whitespace-collapsed text and de-duplicated links
    """
    soup = BeautifulSoup(html or "", "html.parser")

    title_tag = soup.find("title")
    title = title_tag.get_text(strip=True) if title_tag else ""

    for element in soup(STRIPPED_ELEMENTS):
        element.decompose()

    body = soup.body or soup
    text = " ".join(body.get_text(separator=" ").split())

    links: list[str] = []
    seen: set[str] = set()
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith(("mailto:", "tel:", "javascript:", "#")):
            continue
        normalized = normalize_url(urljoin(base_url, href))
        if normalized and normalized not in seen and is_in_scope(normalized):
            seen.add(normalized)
            links.append(normalized)

    return ExtractedPage(title=title, text=text, links=links)
