"""RAG ingestion and retrieval configuration dataclass."""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from ..config import parse_bool, parse_list

logger = logging.getLogger(__name__)

# Trusted sites for the legacy keyword path and ad-hoc URL answering
TRUSTED_DOMAINS = [
    "abukhadeejah.com",
    "bakkah.net",
    "troid.org",
    "abuiyaad.com",
    "abuhakeem.com",
    "mpubs.org",
    "mtws.posthaven.com",
]


@dataclass
class RAGConfig:
    """Configuration for crawling, indexing and retrieval.

    Attributes:
        seed_urls: URLs the crawl frontier starts from
        allowed_domains: Hosts the crawler may visit (``www.`` is ignored)
        sources_file: JSON file the seeds/domains were loaded from (informational)
        state_path: JSON file holding per-URL content hashes between runs

        # Crawling settings
        max_pages: Page budget per run; the frontier is capped at ``max_pages * 5``
        crawl_delay: Seconds to wait after every fetch attempt (politeness)
        follow_links: Enqueue in-scope links found on fetched pages
        request_timeout: HTTP fetch timeout in seconds
        max_content_bytes: Pages larger than this are dropped
        user_agent: User agent sent with every fetch

        # Chunking settings
        chunk_size: Characters per chunk window
        chunk_overlap: Characters shared by consecutive windows
        min_chunk_chars: Chunks shorter than this are not embedded during ingestion

        # Vector settings
        embedding_model: Gemini embedding model
        embedding_dim: Output dimensionality override (None = model default)
        collection_name: Qdrant collection holding the chunk points
        recreate_on_mismatch: Drop and recreate the collection on a dimensionality mismatch

        # Retrieval settings
        retriever_mode: "vector" (vector first, legacy fallback) or "legacy" (keyword only)
        search_top_k: Chunks returned by vector search and ad-hoc ranking
        legacy_top_k: Sources kept by the legacy keyword path
        trusted_domains: Allow-list for ad-hoc URL answering and the legacy path

        # Scheduler settings
        auto_index: Run the ingestion scheduler with the server
        ingest_on_startup: Schedule a run shortly after start
        ingest_interval_minutes: Minutes between scheduled runs (<= 0 disables)
        startup_delay: Seconds between start and the startup run
    """

    seed_urls: list[str] = field(default_factory=list)
    allowed_domains: list[str] = field(default_factory=list)
    sources_file: str | Path | None = None
    state_path: str | Path = ".data/ingest_state.json"

    # Crawling settings
    max_pages: int = 50
    crawl_delay: float = 0.5
    follow_links: bool = True
    request_timeout: float = 20.0
    max_content_bytes: int = 2_000_000
    user_agent: str = "Eid-RAG-Bot/0.1"
    show_progress: bool = False

    # Chunking settings
    chunk_size: int = 1200
    chunk_overlap: int = 200
    min_chunk_chars: int = 200

    # Vector settings
    embedding_model: str = "gemini-embedding-001"
    embedding_dim: int | None = None
    collection_name: str = "islamic_chunks"
    recreate_on_mismatch: bool = False

    # Retrieval settings
    retriever_mode: str = "vector"
    search_top_k: int = 6
    legacy_top_k: int = 10
    trusted_domains: list[str] = field(default_factory=lambda: list(TRUSTED_DOMAINS))

    # Scheduler settings
    auto_index: bool = True
    ingest_on_startup: bool = True
    ingest_interval_minutes: float = 24 * 60
    startup_delay: float = 2.0

    def __post_init__(self):
        """Convert paths and validate settings."""
        self.state_path = Path(self.state_path)

        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap must be smaller than chunk_size, got overlap={self.chunk_overlap} "
                f"size={self.chunk_size}"
            )
        if self.max_pages <= 0:
            raise ValueError(f"max_pages must be positive, got {self.max_pages}")
        if self.retriever_mode not in ("vector", "legacy"):
            raise ValueError(f"retriever_mode must be 'vector' or 'legacy', got {self.retriever_mode!r}")

    @property
    def frontier_cap(self) -> int:
        return self.max_pages * 5

    @property
    def interval_seconds(self) -> float | None:
        if not self.ingest_interval_minutes or self.ingest_interval_minutes <= 0:
            return None
        return self.ingest_interval_minutes * 60

    @classmethod
    def from_env(cls, default_sources_file: str | Path = "rag_sources.json") -> "RAGConfig":
        """Build config from the sources JSON file plus environment overrides.

        ``RAG_SOURCES_FILE`` points at a JSON document with ``seed_urls`` and
        ``allowed_domains``; ``RAG_SEED_URLS`` (comma separated) replaces the
        file's seeds when set.
        """
        from dotenv import load_dotenv

        load_dotenv()

        sources_path = Path(os.getenv("RAG_SOURCES_FILE") or default_sources_file)
        sources = load_sources_file(sources_path)

        env_seeds = parse_list(os.getenv("RAG_SEED_URLS"))
        embed_dim = os.getenv("GEMINI_EMBED_OUTPUT_DIM")
        trusted = parse_list(os.getenv("RAG_TRUSTED_DOMAINS"))

        return cls(
            seed_urls=env_seeds or sources.get("seed_urls", []),
            allowed_domains=sources.get("allowed_domains", []),
            sources_file=sources_path,
            state_path=os.getenv("RAG_STATE_FILE", ".data/ingest_state.json"),
            max_pages=int(os.getenv("RAG_MAX_PAGES", "50")),
            crawl_delay=float(os.getenv("RAG_CRAWL_DELAY_MS", "500")) / 1000,
            follow_links=parse_bool(os.getenv("RAG_FOLLOW_LINKS"), True),
            show_progress=parse_bool(os.getenv("RAG_SHOW_PROGRESS"), False),
            min_chunk_chars=int(os.getenv("RAG_MIN_CHUNK_CHARS", "200")),
            embedding_model=os.getenv("GEMINI_EMBED_MODEL", "gemini-embedding-001"),
            embedding_dim=int(embed_dim) if embed_dim else None,
            collection_name=os.getenv("RAG_VECTOR_COLLECTION", "islamic_chunks"),
            recreate_on_mismatch=parse_bool(os.getenv("QDRANT_RECREATE_COLLECTION_ON_MISMATCH"), False),
            retriever_mode=os.getenv("RAG_RETRIEVER", "vector").lower(),
            search_top_k=int(os.getenv("RAG_TOP_K", "6")),
            trusted_domains=trusted or list(TRUSTED_DOMAINS),
            auto_index=parse_bool(os.getenv("RAG_AUTO_INDEX"), True),
            ingest_on_startup=parse_bool(os.getenv("RAG_INGEST_ON_STARTUP"), True),
            ingest_interval_minutes=float(os.getenv("RAG_INGEST_INTERVAL_MINUTES", str(24 * 60))),
        )


def load_sources_file(path: str | Path) -> dict:
    """Load ``{seed_urls, allowed_domains}`` from JSON; a missing file yields empty lists."""
    path = Path(path)
    if not path.exists():
        logger.info(f"[RAG] Sources file not found: {path}")
        return {"seed_urls": [], "allowed_domains": []}

    data = json.loads(path.read_text(encoding="utf-8"))
    return {
        "seed_urls": list(data.get("seed_urls") or []),
        "allowed_domains": list(data.get("allowed_domains") or []),
    }
