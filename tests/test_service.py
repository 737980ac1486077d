"""Tests for the RAGService orchestration, result cache and history."""

import pytest
from conftest import FakeEmbedder

from eid_rag_server.history import SearchHistoryStore
from eid_rag_server.rag.generator import AnswerGenerator
from eid_rag_server.rag.models import chunk_point_id
from eid_rag_server.rag.retriever import DisallowedURLError, Retriever
from eid_rag_server.rag.service import RAGService, ResultCache, SearchFailedError, cache_key
from eid_rag_server.rag.vector_store import VectorIndex


SOURCE = {"title": "The Fundamentals of Tawheed", "url": "https://troid.org/t", "domain": "troid.org", "content": "c"}


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class CountingGenerate:
    def __init__(self, text="Tawheed is the oneness of Allah.", error=None):
        self.text = text
        self.error = error
        self.calls = 0

    def __call__(self, model, prompt):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.text


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def generate():
    return CountingGenerate()


@pytest.fixture
def service(rag_config, server_config, clock, generate):
    rag_config.retriever_mode = "legacy"
    retriever = Retriever(rag_config, FakeEmbedder(), VectorIndex(None))
    generator = AnswerGenerator(server_config, "primary", [], generate_fn=generate)
    return RAGService(retriever, generator, cache=ResultCache(1800, clock=clock))


@pytest.fixture
def vector_service(rag_config, server_config, memory_index, generate):
    embedder = FakeEmbedder()
    memory_index.ensure_collection(9)
    text = "Tawheed is the foundation of the religion and the oneness of Allah in worship."
    memory_index.upsert(
        [
            {
                "id": chunk_point_id("https://troid.org/a", 0),
                "vector": embedder.embed(text),
                "payload": {"url": "https://troid.org/a", "title": "Tawheed", "chunk_index": 0, "text": text},
            }
        ]
    )
    embedder.calls.clear()
    retriever = Retriever(rag_config, embedder, memory_index)
    generator = AnswerGenerator(server_config, "primary", [], generate_fn=generate)
    return RAGService(retriever, generator), embedder


@pytest.mark.unit
class TestServiceWiring:
    """Test that injected collaborators are kept."""

    def test_injected_empty_cache_is_used(self, rag_config, server_config, clock):
        cache = ResultCache(ttl_seconds=5, clock=clock)
        history = SearchHistoryStore()
        retriever = Retriever(rag_config, FakeEmbedder(), VectorIndex(None))

        service = RAGService(retriever, AnswerGenerator(server_config), cache=cache, history=history)

        assert service.cache is cache
        assert service.cache.ttl_seconds == 5
        assert service.history is history

    def test_from_config_uses_cache_ttl_setting(self, rag_config, server_config):
        server_config.CACHE_TTL_SECONDS = 42

        service = RAGService.from_config(server_config, rag_config)

        assert service.cache.ttl_seconds == 42


@pytest.mark.unit
class TestResultCache:
    """Test TTL expiry."""

    def test_expires_on_read(self, clock):
        cache = ResultCache(ttl_seconds=10, clock=clock)
        cache.set("k", "v")

        clock.now += 9
        assert cache.get("k") == "v"
        clock.now += 1
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_clear(self, clock):
        cache = ResultCache(clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()
        assert len(cache) == 0

    def test_cache_key(self):
        assert cache_key("  What is TAWHEED? ") == "what is tawheed?"


@pytest.mark.unit
class TestSearch:
    """Test RAGService.search."""

    def test_search_assembles_result(self, service):
        result = service.search("What is Tawheed?")

        assert result.query == "What is Tawheed?"
        assert result.answer == "Tawheed is the oneness of Allah."
        assert result.model == "primary"
        assert result.sources[0].title == "The Fundamentals of Tawheed"
        assert 0.1 <= result.confidence <= 0.95
        assert result.response_time_ms >= 0

        data = result.to_dict()
        assert set(data) == {"query", "answer", "sources", "confidence", "responseTime", "model"}

    def test_repeat_query_served_from_cache(self, service, generate):
        first = service.search("What is Tawheed?")
        second = service.search("  what is tawheed?  ")

        assert second is first
        assert generate.calls == 1

    def test_expired_entry_is_recomputed(self, service, generate, clock):
        service.search("What is Tawheed?")
        clock.now += 1801

        service.search("What is Tawheed?")

        assert generate.calls == 2

    def test_cache_hit_skips_embedding(self, vector_service, generate):
        service, embedder = vector_service

        first = service.search("What is Tawheed?")
        second = service.search("What is Tawheed?")

        assert second is first
        assert first.sources[0].score_kind == "vector"
        assert len(embedder.calls) == 1
        assert generate.calls == 1

    def test_clear_cache_forces_recompute(self, service, generate):
        service.search("What is Tawheed?")
        service.clear_cache()
        service.search("What is Tawheed?")

        assert generate.calls == 2

    def test_generation_failure_becomes_search_failed(self, rag_config, server_config):
        rag_config.retriever_mode = "legacy"
        retriever = Retriever(rag_config, FakeEmbedder(), VectorIndex(None))
        generator = AnswerGenerator(server_config, "primary", [], generate_fn=CountingGenerate(error=ValueError("x")))
        service = RAGService(retriever, generator)

        with pytest.raises(SearchFailedError, match="Failed to search knowledge") as exc_info:
            service.search("What is Tawheed?")

        assert len(service.cache) == 0
        assert exc_info.value.__cause__ is not None

    def test_history_recorded_for_users_only(self, service):
        service.search("What is Tawheed?")
        service.search("What is the Sunnah?", user_id="u1")

        history = service.history_for("u1")
        assert [r["query"] for r in history] == ["What is the Sunnah?"]
        stored = history[0]["sources"]
        assert stored
        assert history[0]["sourceCount"] == len(stored)
        assert stored[0]["title"] == "The Importance of Following the Sunnah"
        assert stored[0]["url"] == "https://abukhadeejah.com/sunnah-importance"
        assert stored[0]["score_kind"] == "keyword"
        assert service.stats()["totalSearches"] == 1


@pytest.mark.unit
class TestAnswerFromUrls:
    """Test RAGService.answer_from_urls."""

    def test_disallowed_url_surfaces_unchanged(self, service):
        with pytest.raises(DisallowedURLError):
            service.answer_from_urls("What is Tawheed?", ["https://evil.example/page"])

    def test_not_cached(self, service, generate, monkeypatch):
        monkeypatch.setattr(service.retriever, "retrieve_from_urls", lambda query, urls: [])

        service.answer_from_urls("What is Tawheed?", ["https://troid.org/a"])
        service.answer_from_urls("What is Tawheed?", ["https://troid.org/a"])

        assert generate.calls == 2
        assert len(service.cache) == 0


@pytest.mark.unit
class TestHistoryStore:
    """Test SearchHistoryStore."""

    def test_newest_first_with_limit(self):
        store = SearchHistoryStore()
        for i in range(25):
            store.record("u1", f"q{i}", "a", [], 0.2, 10)
        store.record("u2", "other", "a", [], 0.2, 30)

        records = store.for_user("u1", limit=20)

        assert len(records) == 20
        assert records[0]["query"] == "q24"
        stats = store.stats()
        assert stats["totalSearches"] == 26
        assert stats["uniqueUsers"] == 2
        assert len(stats["recentSearches"]) == 10

    def test_persists_to_jsonl(self, tmp_path):
        path = tmp_path / "history.jsonl"
        SearchHistoryStore(str(path)).record("u1", "What is Tawheed?", "answer", [SOURCE], 0.3, 12)

        reloaded = SearchHistoryStore(str(path))

        assert reloaded.for_user("u1")[0]["query"] == "What is Tawheed?"

    def test_skips_malformed_lines(self, tmp_path):
        path = tmp_path / "history.jsonl"
        path.write_text('{"userId": "u1", "query": "ok"}\nnot json\n\n')

        assert [r["query"] for r in SearchHistoryStore(str(path)).for_user("u1")] == ["ok"]

    def test_records_keep_sources(self, tmp_path):
        path = tmp_path / "history.jsonl"
        SearchHistoryStore(str(path)).record("u1", "What is Tawheed?", "answer", [SOURCE], 0.3, 12)

        record = SearchHistoryStore(str(path)).for_user("u1")[0]

        assert record["sources"] == [SOURCE]
        assert record["sourceCount"] == 1

    def test_skips_records_without_user(self, tmp_path):
        path = tmp_path / "history.jsonl"
        path.write_text('[1, 2]\n{"query": "no user"}\n"text"\n{"userId": "u1", "query": "ok"}\n')

        store = SearchHistoryStore(str(path))

        assert [r["query"] for r in store.for_user("u1")] == ["ok"]
        assert store.stats()["totalSearches"] == 1
