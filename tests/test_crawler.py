"""Tests for page fetching and the crawl frontier."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from eid_rag_server.rag.crawler import CrawlFrontier, DocumentCrawler, decode_html
from eid_rag_server.rag.extractor import make_allowed_url_checker


def _response(
    url,
    body=b"<html><body>ok</body></html>",
    content_type="text/html; charset=utf-8",
    headers=None,
    encoding="utf-8",
):
    response = MagicMock()
    response.url = url
    response.headers = {"content-type": content_type, **(headers or {})}
    response.encoding = encoding
    response.iter_content.return_value = [body[i : i + 10] for i in range(0, len(body), 10)]
    return response


@pytest.fixture
def crawler():
    return DocumentCrawler(make_allowed_url_checker(["troid.org"]), request_timeout=5, max_content_bytes=100)


@pytest.mark.unit
class TestFetchPage:
    """Test DocumentCrawler.fetch_page."""

    def test_returns_html(self, crawler):
        response = _response("https://troid.org/a")
        with patch("eid_rag_server.rag.crawler.requests.get", return_value=response) as get:
            html = crawler.fetch_page("https://troid.org/a")

        assert html == "<html><body>ok</body></html>"
        kwargs = get.call_args.kwargs
        assert kwargs["headers"]["User-Agent"] == "Eid-RAG-Bot/0.1"
        assert kwargs["timeout"] == 5
        response.close.assert_called_once()

    def test_blocks_redirect_off_domain(self, crawler):
        response = _response("https://evil.example/landing")
        with patch("eid_rag_server.rag.crawler.requests.get", return_value=response):
            assert crawler.fetch_page("https://troid.org/a") is None

    def test_skips_non_html(self, crawler):
        response = _response("https://troid.org/file.pdf", content_type="application/pdf")
        with patch("eid_rag_server.rag.crawler.requests.get", return_value=response):
            assert crawler.fetch_page("https://troid.org/file.pdf") is None

    def test_rejects_declared_oversize(self, crawler):
        response = _response("https://troid.org/a", headers={"content-length": "5000"})
        with patch("eid_rag_server.rag.crawler.requests.get", return_value=response):
            assert crawler.fetch_page("https://troid.org/a") is None
        response.iter_content.assert_not_called()

    def test_rejects_streamed_oversize(self, crawler):
        response = _response("https://troid.org/a", body=b"x" * 500)
        with patch("eid_rag_server.rag.crawler.requests.get", return_value=response):
            assert crawler.fetch_page("https://troid.org/a") is None
        response.close.assert_called_once()

    def test_http_error_returns_none(self, crawler):
        response = _response("https://troid.org/a")
        response.raise_for_status.side_effect = requests.HTTPError("404 Client Error")
        with patch("eid_rag_server.rag.crawler.requests.get", return_value=response):
            assert crawler.fetch_page("https://troid.org/a") is None

    def test_timeout_returns_none(self, crawler):
        with patch("eid_rag_server.rag.crawler.requests.get", side_effect=requests.Timeout()):
            assert crawler.fetch_page("https://troid.org/a") is None


@pytest.mark.unit
class TestDecodeHtml:
    """Test charset selection for fetched pages."""

    TEXT = "<html><body>Tawḥīd: التوحيد</body></html>"

    def test_utf8_page_without_charset_header(self):
        crawler = DocumentCrawler(make_allowed_url_checker(["troid.org"]), max_content_bytes=10_000)
        # requests reports ISO-8859-1 for text/html without a charset
        response = _response(
            "https://troid.org/a", body=self.TEXT.encode("utf-8"), content_type="text/html", encoding="ISO-8859-1"
        )
        with patch("eid_rag_server.rag.crawler.requests.get", return_value=response):
            html = crawler.fetch_page("https://troid.org/a")

        assert html == self.TEXT

    def test_header_charset_wins(self):
        body = "<html><body>café</body></html>".encode("iso-8859-1")

        assert "café" in decode_html(body, "text/html; charset=ISO-8859-1", "ISO-8859-1")

    def test_meta_charset_used_without_header_charset(self):
        body = '<html><head><meta charset="windows-1256"></head><body>التوحيد</body></html>'.encode("windows-1256")

        assert "التوحيد" in decode_html(body, "text/html", "ISO-8859-1")

    def test_unknown_meta_charset_falls_back_to_utf8(self):
        body = '<html><head><meta charset="no-such-codec"></head><body>Tawḥīd</body></html>'.encode("utf-8")

        assert "Tawḥīd" in decode_html(body, "text/html")


@pytest.mark.unit
class TestCrawlFrontier:
    """Test the BFS frontier."""

    def test_fifo_order_and_dedup(self):
        frontier = CrawlFrontier(["a", "b", "a"])
        frontier.push("c")
        frontier.push("b")

        assert len(frontier) == 3
        assert [frontier.pop(), frontier.pop(), frontier.pop()] == ["a", "b", "c"]
        assert not frontier

    def test_popped_urls_are_not_requeued(self):
        frontier = CrawlFrontier(["a"])
        frontier.pop()

        assert frontier.push("a") is False
        assert not frontier

    def test_cap_limits_seen_set(self):
        frontier = CrawlFrontier(["seed"], max_size=3)

        assert frontier.push("x") is True
        assert frontier.push("y") is True
        assert frontier.push("z") is False
        assert frontier.seen_count == 3
