"""Incremental crawl-and-index pipeline.

Breadth-first crawl of the trusted sites feeding the vector index:
- Page budget (``max_pages``) and a capped frontier bound each run
- Per-URL content hashes skip pages whose text did not change
- State is rewritten after every indexed page, so an interrupted run keeps its progress
"""

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable
from urllib.parse import urlparse

from tqdm import tqdm

from .chunker import chunk_text
from .config import RAGConfig
from .crawler import CrawlFrontier, DocumentCrawler
from .embeddings import EmbeddingClient
from .extractor import MIN_PAGE_CHARS, extract_page, make_allowed_url_checker, normalize_host, normalize_url
from .models import IngestStats, PageRecord, chunk_point_id, content_hash
from .vector_store import VectorIndex

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """Crawls seed URLs, then chunks, embeds and upserts new or changed pages."""

    def __init__(
        self,
        config: RAGConfig,
        embedder: EmbeddingClient,
        vector_index: VectorIndex,
        crawler: DocumentCrawler | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the pipeline.

        Args:
            config: RAG configuration
            embedder: Client producing chunk embeddings
            vector_index: Collection receiving the chunk points
            crawler: Optional fetcher; by default one is built per run for the run's allow-list
            sleep: Politeness delay function (injectable for tests)
        """
        self.config = config
        self.embedder = embedder
        self.vector_index = vector_index
        self.crawler = crawler
        self._sleep = sleep
        self.state_file = Path(config.state_path)

    @classmethod
    def from_config(cls, server_config, rag_config: RAGConfig) -> "IngestionPipeline":
        embedder = EmbeddingClient(server_config, rag_config.embedding_model, rag_config.embedding_dim)
        return cls(rag_config, embedder, VectorIndex.from_config(server_config, rag_config))

    def run(self, seed_urls: list[str] | None = None, allowed_domains: list[str] | None = None) -> IngestStats:
        """Run one crawl over the seeds and index what changed.

        Args:
            seed_urls: Starting URLs (default: config.seed_urls)
            allowed_domains: Hosts the crawl may visit (default: config.allowed_domains)

        Returns:
            IngestStats for the run

        Raises:
            ValueError: No seed URL survives normalization and the allow-list
            Exception: Embedding or vector index failures abort the run
        """
        seed_urls = self.config.seed_urls if seed_urls is None else seed_urls
        allowed_domains = self.config.allowed_domains if allowed_domains is None else allowed_domains
        is_allowed = make_allowed_url_checker(allowed_domains)

        seeds: list[str] = []
        for raw in seed_urls or []:
            url = normalize_url(str(raw).strip()) if str(raw).strip() else None
            if url and is_allowed(url) and url not in seeds:
                seeds.append(url)

        if not seeds:
            raise ValueError("No valid seed URLs. Check rag_sources.json or RAG_SEED_URLS.")

        crawler = self.crawler or DocumentCrawler(
            is_allowed,
            request_timeout=self.config.request_timeout,
            max_content_bytes=self.config.max_content_bytes,
            user_agent=self.config.user_agent,
        )

        state = self._load_state()
        pages: dict[str, Any] = state.setdefault("pages", {})
        frontier = CrawlFrontier(seeds, max_size=self.config.frontier_cap)
        stats = IngestStats(seeds=seeds, state_path=str(self.state_file))

        logger.info(
            f"[RAG] Starting ingestion: {len(seeds)} seed(s), max_pages={self.config.max_pages}, "
            f"follow_links={self.config.follow_links}, {len(pages)} page(s) in state"
        )
        start_time = time.time()

        pbar = tqdm(
            total=self.config.max_pages,
            desc="Indexing pages",
            unit="page",
            disable=not self.config.show_progress,
            file=sys.stderr,
        )
        try:
            while frontier and stats.pages_fetched < self.config.max_pages:
                url = frontier.pop()

                html = crawler.fetch_page(url)
                if html is None:
                    self._pause()
                    continue

                stats.pages_fetched += 1
                pbar.update(1)

                page = extract_page(html, url, is_allowed)
                if self.config.follow_links:
                    for link in page.links:
                        frontier.push(link)

                if len(page.text) < MIN_PAGE_CHARS:
                    logger.debug(f"[RAG] Skipping thin page ({len(page.text)} chars): {url}")
                    self._pause()
                    continue

                page_hash = content_hash(page.text)
                previous = pages.get(url)
                if previous and previous.get("hash") == page_hash:
                    stats.pages_skipped_unchanged += 1
                    logger.debug(f"[RAG] Unchanged, skipping: {url}")
                    self._pause()
                    continue

                domain = normalize_host(urlparse(url).hostname)
                title = page.title or url
                upserted = self._index_page(url, title, domain, page.text, stats)
                stats.points_upserted += upserted

                pages[url] = PageRecord(
                    hash=page_hash,
                    title=title,
                    domain=domain,
                    updatedAt=datetime.now(timezone.utc).isoformat(),
                ).to_dict()
                self._save_state(state)

                pbar.set_postfix_str(
                    f"points={stats.points_upserted}, unchanged={stats.pages_skipped_unchanged}, queue={len(frontier)}",
                    refresh=False,
                )
                logger.info(f"[RAG] Indexed {url} ({upserted} chunk(s))")
                self._pause()
        finally:
            pbar.close()

        logger.info(
            f"[RAG] Ingestion complete in {time.time() - start_time:.1f}s: {stats.pages_fetched} fetched, "
            f"{stats.pages_skipped_unchanged} unchanged, {stats.points_upserted} points, dim={stats.embedded_dim}"
        )
        return stats

    def _index_page(self, url: str, title: str, domain: str, text: str, stats: IngestStats) -> int:
        """Chunk, embed and upsert one page; returns the number of points written."""
        chunks = chunk_text(text, self.config.chunk_size, self.config.chunk_overlap)
        upserted = 0

        for index, chunk in enumerate(chunks):
            if len(chunk) < self.config.min_chunk_chars:
                continue

            vector = self.embedder.embed(chunk)
            if stats.embedded_dim is None:
                # First embedding of the run fixes the collection's dimensionality
                stats.embedded_dim = len(vector)
                self.vector_index.ensure_collection(stats.embedded_dim)

            self.vector_index.upsert(
                [
                    {
                        "id": chunk_point_id(url, index),
                        "vector": vector,
                        "payload": {
                            "url": url,
                            "title": title,
                            "domain": domain,
                            "chunk_index": index,
                            "text": chunk,
                        },
                    }
                ]
            )
            upserted += 1

        return upserted

    def _pause(self):
        if self.config.crawl_delay > 0:
            self._sleep(self.config.crawl_delay)

    def _load_state(self) -> dict[str, Any]:
        """Load ingestion state from disk.

        Returns:
            State dict with a ``pages`` map of URL -> PageRecord fields
        """
        if not self.state_file.exists():
            return {"pages": {}}
        try:
            state = json.loads(self.state_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"[RAG] Failed to load ingestion state from {self.state_file}: {e}, starting fresh")
            return {"pages": {}}
        if not isinstance(state, dict) or not isinstance(state.get("pages"), dict):
            logger.warning(f"[RAG] Ignoring malformed ingestion state in {self.state_file}")
            return {"pages": {}}
        return state

    def _save_state(self, state: dict[str, Any]):
        """Atomically rewrite the state file (write temp file, then replace)."""
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.state_file.with_name(f"{self.state_file.name}.tmp")
        tmp_path.write_text(json.dumps(state, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.state_file)
