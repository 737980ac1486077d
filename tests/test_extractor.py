"""Tests for HTML extraction and URL normalization."""

import pytest

from eid_rag_server.rag.extractor import (
    extract_page,
    make_allowed_url_checker,
    normalize_host,
    normalize_url,
)


@pytest.mark.unit
class TestNormalizeUrl:
    """Test URL normalization."""

    def test_drops_fragment(self):
        assert normalize_url("https://troid.org/a#section-2") == "https://troid.org/a"

    def test_drops_tracking_params_only(self):
        url = "https://troid.org/a?utm_source=x&page=2&utm_campaign=y&gclid=z"
        assert normalize_url(url) == "https://troid.org/a?page=2"

    def test_keeps_query_without_tracking_params(self):
        assert normalize_url("https://troid.org/search?q=tawheed&p=1") == "https://troid.org/search?q=tawheed&p=1"

    def test_empty_path_becomes_root(self):
        assert normalize_url("https://Troid.ORG") == "https://troid.org/"

    def test_relative_or_garbage_is_rejected(self):
        assert normalize_url("/relative/path") is None
        assert normalize_url("not a url") is None

    def test_idempotent(self):
        once = normalize_url("https://bakkah.net/x?utm_medium=a&b=1#frag")
        assert normalize_url(once) == once


@pytest.mark.unit
class TestAllowedUrlChecker:
    """Test the allow-list predicate."""

    def test_www_prefix_is_ignored(self):
        is_allowed = make_allowed_url_checker(["www.troid.org"])
        assert is_allowed("https://troid.org/a")
        assert is_allowed("https://www.troid.org/a")

    def test_other_hosts_and_schemes_rejected(self):
        is_allowed = make_allowed_url_checker(["troid.org"])
        assert not is_allowed("https://evil.example/a")
        assert not is_allowed("https://troid.org.evil.example/a")
        assert not is_allowed("ftp://troid.org/a")

    def test_normalize_host(self):
        assert normalize_host("WWW.Bakkah.NET") == "bakkah.net"
        assert normalize_host(None) == ""


@pytest.mark.unit
class TestExtractPage:
    """Test title, text and link extraction."""

    HTML = """
    <html>
      <head><title> Tawheed Explained </title><style>body { color: red; }</style></head>
      <body>
        <header>Site header</header>
        <nav><a href="/nav-link">Nav</a></nav>
        <main>
          <h1>Tawheed</h1>
          <p>The   oneness
             of Allah.</p>
          <a href="/b#top">Next</a>
          <a href="https://troid.org/b">Duplicate</a>
          <a href="https://other.example/c">External</a>
          <a href="mailto:someone@troid.org">Mail</a>
          <a href="javascript:void(0)">JS</a>
          <a href="#local">Anchor</a>
          <a href="/c?utm_source=feed">Tracked</a>
        </main>
        <script>var x = "script text";</script>
        <footer>Footer text</footer>
      </body>
    </html>
    """

    def _extract(self):
        return extract_page(self.HTML, "https://troid.org/a", make_allowed_url_checker(["troid.org"]))

    def test_title(self):
        assert self._extract().title == "Tawheed Explained"

    def test_text_is_collapsed_and_boilerplate_removed(self):
        text = self._extract().text

        assert "The oneness of Allah." in text
        assert "  " not in text
        for removed in ("Site header", "Nav", "script text", "Footer text", "color: red"):
            assert removed not in text

    def test_links_are_resolved_normalized_and_deduplicated(self):
        links = self._extract().links

        assert links == ["https://troid.org/b", "https://troid.org/c"]

    def test_missing_title(self):
        page = extract_page("<html><body><p>Hello</p></body></html>", "https://troid.org/", lambda url: True)
        assert page.title == ""
        assert page.text == "Hello"
