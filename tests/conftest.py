"""Shared pytest fixtures for Eid RAG Server tests."""

import pytest
from qdrant_client import QdrantClient

from eid_rag_server.config import ServerConfig
from eid_rag_server.rag.config import RAGConfig
from eid_rag_server.rag.vector_store import VectorIndex

KEYWORDS = ["tawheed", "sunnah", "prayer", "fasting", "zakat", "hajj", "quran", "faith"]


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without network access")


class FakeEmbedder:
    """Deterministic bag-of-keywords embedder (one dimension per keyword plus a bias)."""

    def __init__(self, dim_padding: int = 0, fail_with: Exception | None = None):
        self.dim_padding = dim_padding
        self.fail_with = fail_with
        self.calls: list[str] = []

    @property
    def is_configured(self) -> bool:
        return True

    def embed(self, text: str) -> list[float]:
        if self.fail_with is not None:
            raise self.fail_with
        if not str(text or "").strip():
            return []
        self.calls.append(text)
        lowered = text.lower()
        return [float(lowered.count(k)) for k in KEYWORDS] + [0.1] + [0.0] * self.dim_padding


class FakeCrawler:
    """Serves canned HTML by URL and records every fetch."""

    def __init__(self, pages: dict[str, str]):
        self.pages = pages
        self.fetched: list[str] = []

    def fetch_page(self, url: str):
        self.fetched.append(url)
        return self.pages.get(url)


def make_html(title: str, body: str, links: list[str] | None = None) -> str:
    anchors = "".join(f'<a href="{href}">link</a>' for href in links or [])
    return (
        f"<html><head><title>{title}</title></head>"
        f"<body><nav>Menu Home About</nav><main><p>{body}</p>{anchors}</main>"
        f"<script>var tracking = 1;</script><footer>Copyright</footer></body></html>"
    )


@pytest.fixture
def server_config():
    """Provide a ServerConfig with a dummy Gemini key and no Qdrant."""
    config = ServerConfig()
    config.GEMINI_API_KEY = "test-key"
    config.GEMINI_API_BASE = "https://gemini.test/v1beta"
    config.HEALTH_CHECK_ON_STARTUP = False
    return config


@pytest.fixture
def rag_config(tmp_path):
    """Provide a RAGConfig scoped to troid.org with no crawl delay."""
    return RAGConfig(
        seed_urls=["https://troid.org/a"],
        allowed_domains=["troid.org"],
        state_path=tmp_path / "ingest_state.json",
        crawl_delay=0,
        auto_index=True,
        startup_delay=0.01,
    )


@pytest.fixture
def memory_index():
    """Provide a VectorIndex over an in-process Qdrant instance."""
    return VectorIndex(QdrantClient(":memory:"), collection_name="test_chunks")


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def long_tawheed_text():
    """About 1,500 characters of page text about Tawheed."""
    sentence = "Tawheed is the foundation of the religion and the oneness of Allah in worship. "
    return sentence * 19
