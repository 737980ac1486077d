"""Records shared by the ingestion and retrieval pipeline."""

import hashlib
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any


def content_hash(text: str) -> str:
    """SHA-1 digest of extracted page text, used to detect changed pages."""
    return hashlib.sha1(str(text).encode("utf-8")).hexdigest()


def chunk_point_id(url: str, chunk_index: int) -> str:
    """Stable Qdrant point id for chunk ``chunk_index`` of ``url``.

    Qdrant ids must be unsigned ints or UUIDs, so the first 16 bytes of the
    SHA-1 digest become a version-5 UUID. The same (url, index) always maps
    to the same id, which makes re-upserts overwrite instead of duplicate.
    """
    digest = hashlib.sha1(f"{url}#chunk={chunk_index}".encode("utf-8")).digest()
    return str(uuid.UUID(bytes=digest[:16], version=5))


@dataclass
class PageRecord:
    """Ingestion state for one crawled URL."""

    hash: str
    title: str
    domain: str
    updatedAt: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PageRecord":
        return cls(
            hash=data.get("hash", ""),
            title=data.get("title", ""),
            domain=data.get("domain", ""),
            updatedAt=data.get("updatedAt", ""),
        )


@dataclass
class Source:
    """A ranked piece of evidence handed to the answer generator.

    ``relevance`` is always in [0, 1]; ``score_kind`` says whether it is a
    cosine similarity ("vector") or a normalized keyword score ("keyword").
    """

    title: str
    url: str
    domain: str
    content: str
    excerpt: str = ""
    relevance: float = 0.0
    chunk_index: int | None = None
    score_kind: str = "keyword"

    def __post_init__(self):
        if not self.excerpt:
            self.excerpt = make_excerpt(self.content)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if data["chunk_index"] is None:
            data.pop("chunk_index")
        return data


@dataclass
class SearchResult:
    """Answer to one query together with its grounding sources."""

    query: str
    answer: str
    sources: list[Source]
    confidence: float
    response_time_ms: int
    model: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "answer": self.answer,
            "sources": [source.to_dict() for source in self.sources],
            "confidence": self.confidence,
            "responseTime": self.response_time_ms,
            "model": self.model,
        }


@dataclass
class IngestStats:
    """Counters reported by one ingestion run."""

    seeds: list[str] = field(default_factory=list)
    pages_fetched: int = 0
    pages_skipped_unchanged: int = 0
    points_upserted: int = 0
    embedded_dim: int | None = None
    state_path: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "seeds": list(self.seeds),
            "pagesFetched": self.pages_fetched,
            "pagesSkippedUnchanged": self.pages_skipped_unchanged,
            "pointsUpserted": self.points_upserted,
            "embeddedDim": self.embedded_dim,
            "statePath": self.state_path,
        }


def make_excerpt(text: str, max_chars: int = 240) -> str:
    """Shorten text to ``max_chars`` on a word boundary."""
    text = " ".join(str(text or "").split())
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars].rsplit(" ", 1)[0]
    return f"{cut}..."
