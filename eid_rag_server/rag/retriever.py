"""Query-time retrieval with vector search and keyword-ranked fallbacks.

Retrieval strategies:
1. Vector search over the ingested chunks (default)
2. Legacy keyword path over per-domain snippet sources, used when vector
   search finds nothing or the backend fails (or when forced by config)
3. Ad-hoc retrieval from caller-supplied trusted URLs, fetched and ranked on
   the fly without prior indexing
"""

import logging
import re
from typing import Any
from urllib.parse import urlparse

from .chunker import chunk_text
from .config import RAGConfig
from .crawler import DocumentCrawler
from .embeddings import EmbeddingClient
from .extractor import MIN_ADHOC_PAGE_CHARS, extract_page, make_allowed_url_checker, normalize_host, normalize_url
from .models import Source, chunk_point_id
from .vector_store import VectorIndex

logger = logging.getLogger(__name__)


class DisallowedURLError(ValueError):
    """An ad-hoc request named a URL outside the trusted domains."""

    def __init__(self, url: str, allowed_domains: list[str]):
        self.url = url
        self.allowed_domains = list(allowed_domains)
        super().__init__(f"URL not allowed: {url}. Allowed domains: {', '.join(self.allowed_domains)}")


# Keyword scoring weights
TITLE_WORD_WEIGHT = 3
BODY_WORD_WEIGHT = 1
TITLE_PHRASE_BONUS = 5
BODY_PHRASE_BONUS = 2


def _query_words(query: str) -> list[str]:
    return re.findall(r"\w+", str(query or "").lower())


def keyword_score(query: str, title: str, body: str) -> int:
    """Score a candidate by query word and whole-phrase matches.

    Each query word found in the title adds 3 and in the body adds 1; the
    words as one phrase found in the title add 5 and in the body add 2.
    Punctuation in the query is ignored.
    """
    phrase = " ".join(_query_words(query))
    title = str(title or "").lower()
    body = str(body or "").lower()

    score = 0
    for word in _query_words(query):
        if word in title:
            score += TITLE_WORD_WEIGHT
        if word in body:
            score += BODY_WORD_WEIGHT

    if phrase and phrase in title:
        score += TITLE_PHRASE_BONUS
    if phrase and phrase in body:
        score += BODY_PHRASE_BONUS
    return score


def max_keyword_score(query: str) -> int:
    """Highest score ``keyword_score`` can give for this query."""
    words = _query_words(query)
    if not words:
        return 0
    return len(words) * (TITLE_WORD_WEIGHT + BODY_WORD_WEIGHT) + TITLE_PHRASE_BONUS + BODY_PHRASE_BONUS


def rank_by_keywords(query: str, candidates: list[Source]) -> list[Source]:
    """Sort candidates by keyword score, best first (stable for ties).

    Relevance is the raw score divided by ``max_keyword_score`` so it lands
    in [0, 1] like vector similarity; ``score_kind`` marks it as "keyword".
    """
    ceiling = max_keyword_score(query) or 1
    scored = []
    for candidate in candidates:
        raw = keyword_score(query, candidate.title, candidate.content)
        candidate.relevance = round(raw / ceiling, 4)
        candidate.score_kind = "keyword"
        scored.append((raw, candidate))

    scored.sort(key=lambda item: item[0], reverse=True)
    return [candidate for _, candidate in scored]


class LegacySourceProvider:
    """Per-domain snippet source for the legacy keyword path.

    Subclasses return dicts with ``title``, ``url``, ``content`` and an
    optional ``excerpt`` for one trusted domain.
    """

    def search_domain(self, domain: str, query: str) -> list[dict[str, Any]]:
        raise NotImplementedError


class StaticSnippetProvider(LegacySourceProvider):
    """Curated snippets per trusted domain, served when vector search is unavailable."""

    SNIPPETS: dict[str, list[dict[str, str]]] = {
        "abukhadeejah.com": [
            {
                "title": "The Importance of Following the Sunnah",
                "path": "/sunnah-importance",
                "content": (
                    "The Sunnah of the Prophet (peace be upon him) is the second source of Islamic legislation "
                    "after the Quran. It provides guidance on how to implement the teachings of the Quran in "
                    "daily life."
                ),
                "excerpt": "The Sunnah provides practical guidance for implementing Quranic teachings...",
            }
        ],
        "bakkah.net": [
            {
                "title": "Understanding Islamic Beliefs",
                "path": "/islamic-beliefs",
                "content": (
                    "Islamic beliefs are based on the six pillars of faith: belief in Allah, His angels, His "
                    "books, His messengers, the Day of Judgment, and divine decree."
                ),
                "excerpt": "The six pillars of faith form the foundation of Islamic belief...",
            }
        ],
        "troid.org": [
            {
                "title": "The Fundamentals of Tawheed",
                "path": "/tawheed-fundamentals",
                "content": (
                    "Tawheed is the foundation of Islam, meaning the oneness of Allah. It encompasses three "
                    "categories: Tawheed ar-Ruboobiyyah, Tawheed al-Uloohiyyah, and Tawheed al-Asmaa was-Sifaat."
                ),
                "excerpt": "Tawheed, the oneness of Allah, is the core principle of Islam...",
            }
        ],
    }

    def __init__(self, snippets: dict[str, list[dict[str, str]]] | None = None):
        self.snippets = self.SNIPPETS if snippets is None else snippets

    def search_domain(self, domain: str, query: str) -> list[dict[str, Any]]:
        return [
            {
                "title": item["title"],
                "url": f"https://{domain}{item.get('path', '/')}",
                "content": item["content"],
                "excerpt": item.get("excerpt", ""),
            }
            for item in self.snippets.get(domain, [])
        ]


class Retriever:
    """Finds grounding sources for a query."""

    def __init__(
        self,
        config: RAGConfig,
        embedder: EmbeddingClient,
        vector_index: VectorIndex,
        legacy_provider: LegacySourceProvider | None = None,
        crawler: DocumentCrawler | None = None,
    ):
        """Initialize the retriever.

        Args:
            config: RAG configuration (mode, top-k, trusted domains, fetch limits)
            embedder: Query/chunk embedding client
            vector_index: Collection searched by the vector path
            legacy_provider: Snippet source for the keyword path (default: StaticSnippetProvider)
            crawler: Fetcher for ad-hoc URLs (default: one restricted to the trusted domains)
        """
        self.config = config
        self.embedder = embedder
        self.vector_index = vector_index
        self.legacy_provider = legacy_provider or StaticSnippetProvider()
        self.is_trusted = make_allowed_url_checker(config.trusted_domains)
        self.crawler = crawler or DocumentCrawler(
            self.is_trusted,
            request_timeout=config.request_timeout,
            max_content_bytes=config.max_content_bytes,
            user_agent=config.user_agent,
        )

    def retrieve(self, query: str) -> list[Source]:
        """Return ranked sources for a query.

        Vector search runs first; zero hits or a backend failure switch to the
        legacy keyword path. Results of the two paths are never merged.
        """
        if self.config.retriever_mode == "legacy":
            return self.legacy_search(query)

        try:
            sources = self.vector_search(query)
        except Exception as e:
            logger.warning(f"[RETRIEVER] Vector search failed, using legacy sources: {e}")
            return self.legacy_search(query)

        if not sources:
            logger.info("[RETRIEVER] Vector search returned no hits, using legacy sources")
            return self.legacy_search(query)
        return sources

    def vector_search(self, query: str) -> list[Source]:
        """Embed the query and map the nearest chunks to sources."""
        vector = self.embedder.embed(query)
        hits = self.vector_index.search(vector, limit=self.config.search_top_k)

        sources = []
        for hit in hits:
            payload = hit.get("payload") or {}
            url = payload.get("url", "")
            sources.append(
                Source(
                    title=payload.get("title") or url,
                    url=url,
                    domain=payload.get("domain") or normalize_host(urlparse(url).hostname),
                    content=payload.get("text", ""),
                    relevance=min(max(float(hit.get("score", 0.0)), 0.0), 1.0),
                    chunk_index=payload.get("chunk_index"),
                    score_kind="vector",
                )
            )
        return sources

    def legacy_search(self, query: str) -> list[Source]:
        """Gather snippets from every trusted domain and keep the best keyword matches."""
        candidates: list[Source] = []
        for domain in self.config.trusted_domains:
            try:
                results = self.legacy_provider.search_domain(domain, query)
            except Exception as e:
                logger.warning(f"[RETRIEVER] Legacy source for {domain} failed: {e}")
                continue

            for item in results or []:
                if not item or not item.get("content"):
                    continue
                candidates.append(
                    Source(
                        title=item.get("title") or item.get("url", ""),
                        url=item.get("url", ""),
                        domain=domain,
                        content=item["content"],
                        excerpt=item.get("excerpt", ""),
                    )
                )

        return rank_by_keywords(query, candidates)[: self.config.legacy_top_k]

    def validate_urls(self, urls: list[str]) -> list[str]:
        """Normalize ad-hoc URLs, rejecting the whole list if any host is untrusted.

        Raises:
            DisallowedURLError: At least one URL is not on a trusted domain
        """
        normalized = []
        for raw in urls:
            url = normalize_url(raw)
            if not url or not self.is_trusted(url):
                raise DisallowedURLError(str(raw), self.config.trusted_domains)
            if url not in normalized:
                normalized.append(url)
        return normalized

    def retrieve_from_urls(self, query: str, urls: list[str]) -> list[Source]:
        """Fetch, chunk and keyword-rank the given trusted pages.

        Nothing is fetched unless every URL passes validation. The top chunks
        are also pushed into the vector index on a best-effort basis.

        Args:
            query: User question
            urls: Pages on trusted domains to answer from

        Returns:
            Top ``search_top_k`` chunks as keyword-ranked sources
        """
        urls = self.validate_urls(urls)

        candidates: list[Source] = []
        for url in urls:
            html = self.crawler.fetch_page(url)
            if html is None:
                continue

            page = extract_page(html, url, self.is_trusted)
            if len(page.text) < MIN_ADHOC_PAGE_CHARS:
                logger.debug(f"[RETRIEVER] Ignoring thin page ({len(page.text)} chars): {url}")
                continue

            title = page.title or url
            domain = normalize_host(urlparse(url).hostname)
            for index, chunk in enumerate(chunk_text(page.text, self.config.chunk_size, self.config.chunk_overlap)):
                candidates.append(Source(title=title, url=url, domain=domain, content=chunk, chunk_index=index))

        top = rank_by_keywords(query, candidates)[: self.config.search_top_k]
        logger.info(
            f"[RETRIEVER] Ad-hoc retrieval: {len(candidates)} chunk(s) from {len(urls)} URL(s), kept {len(top)}"
        )

        self._reindex_best_effort(top)
        return top

    def _reindex_best_effort(self, sources: list[Source]):
        """Embed and upsert ad-hoc chunks for later vector search; never raises."""
        if not sources or not self.vector_index.is_configured or not self.embedder.is_configured:
            return

        try:
            ensured = False
            points = []
            for source in sources:
                vector = self.embedder.embed(source.content)
                if not vector:
                    continue
                if not ensured:
                    self.vector_index.ensure_collection(len(vector))
                    ensured = True
                points.append(
                    {
                        "id": chunk_point_id(source.url, source.chunk_index or 0),
                        "vector": vector,
                        "payload": {
                            "url": source.url,
                            "title": source.title,
                            "domain": source.domain,
                            "chunk_index": source.chunk_index or 0,
                            "text": source.content,
                        },
                    }
                )
            self.vector_index.upsert(points)
            logger.info(f"[RETRIEVER] Reindexed {len(points)} ad-hoc chunk(s)")
        except Exception as e:
            logger.warning(f"[RETRIEVER] Best-effort reindex failed: {e}")
