"""Query orchestration: cache, retrieval, generation, confidence and history."""

import logging
import threading
import time
from typing import Any, Callable

from ..history import SearchHistoryStore
from .confidence import confidence_score
from .config import RAGConfig
from .embeddings import EmbeddingClient
from .generator import AnswerGenerator
from .models import SearchResult
from .retriever import DisallowedURLError, Retriever
from .vector_store import VectorIndex

logger = logging.getLogger(__name__)


class SearchFailedError(RuntimeError):
    """Retrieval or generation failed for a query."""

    def __init__(self, message: str = "Failed to search knowledge"):
        super().__init__(message)


class ResultCache:
    """TTL cache of search results keyed by normalized query.

    Entries expire on read. There is no size bound; ``clear()`` empties it.
    """

    def __init__(self, ttl_seconds: float = 1800, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value):
        with self._lock:
            self._entries[key] = (self._clock(), value)

    def clear(self):
        with self._lock:
            self._entries.clear()


def cache_key(query: str) -> str:
    return str(query or "").strip().lower()


class RAGService:
    """Answers questions from the trusted-source knowledge base."""

    def __init__(
        self,
        retriever: Retriever,
        generator: AnswerGenerator,
        cache: ResultCache | None = None,
        history: SearchHistoryStore | None = None,
    ):
        self.retriever = retriever
        self.generator = generator
        self.cache = cache if cache is not None else ResultCache()
        self.history = history if history is not None else SearchHistoryStore()

    @classmethod
    def from_config(cls, server_config, rag_config: RAGConfig) -> "RAGService":
        """Wire the Gemini and Qdrant backed components from configuration."""
        embedder = EmbeddingClient(server_config, rag_config.embedding_model, rag_config.embedding_dim)
        retriever = Retriever(rag_config, embedder, VectorIndex.from_config(server_config, rag_config))
        return cls(
            retriever,
            AnswerGenerator(server_config),
            cache=ResultCache(server_config.CACHE_TTL_SECONDS),
            history=SearchHistoryStore(server_config.HISTORY_FILE or None),
        )

    def search(self, query: str, user_id: str | None = None) -> SearchResult:
        """Answer a query from indexed knowledge (or the legacy sources).

        A fresh cached result for the same normalized query is returned as-is.

        Raises:
            SearchFailedError: Retrieval or generation failed
        """
        start = time.monotonic()
        key = cache_key(query)

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"[RAG] Cache hit for '{key}'")
            return cached

        try:
            sources = self.retriever.retrieve(query)
            answer = self.generator.generate(query, sources)
        except Exception as e:
            logger.error(f"[RAG] Search failed for '{query}': {e}")
            raise SearchFailedError() from e

        result = SearchResult(
            query=query,
            answer=answer.text,
            sources=sources,
            confidence=confidence_score(sources),
            response_time_ms=int((time.monotonic() - start) * 1000),
            model=answer.model_used,
        )
        self.cache.set(key, result)
        self._record(user_id, result)
        return result

    def answer_from_urls(self, query: str, urls: list[str], user_id: str | None = None) -> SearchResult:
        """Answer a query from specific trusted pages, fetched now. Not cached.

        Raises:
            DisallowedURLError: A URL is outside the trusted domains
            SearchFailedError: Fetching, ranking or generation failed
        """
        start = time.monotonic()
        try:
            sources = self.retriever.retrieve_from_urls(query, urls)
            answer = self.generator.generate(query, sources)
        except DisallowedURLError:
            raise
        except Exception as e:
            logger.error(f"[RAG] URL answer failed for '{query}': {e}")
            raise SearchFailedError() from e

        result = SearchResult(
            query=query,
            answer=answer.text,
            sources=sources,
            confidence=confidence_score(sources),
            response_time_ms=int((time.monotonic() - start) * 1000),
            model=answer.model_used,
        )
        self._record(user_id, result)
        return result

    def related_questions(self, topic: str) -> list[str]:
        return self.generator.related_questions(topic)

    def clear_cache(self):
        self.cache.clear()
        logger.info("[RAG] Search cache cleared")

    def history_for(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        return self.history.for_user(user_id, limit=limit)

    def stats(self) -> dict[str, Any]:
        stats = self.history.stats()
        stats["cacheEntries"] = len(self.cache)
        stats["retrieverMode"] = self.retriever.config.retriever_mode
        return stats

    def _record(self, user_id: str | None, result: SearchResult):
        if not user_id:
            return
        self.history.record(
            user_id,
            result.query,
            result.answer,
            [source.to_dict() for source in result.sources],
            result.confidence,
            result.response_time_ms,
        )
