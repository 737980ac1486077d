"""Ingestion and retrieval pipeline for the trusted-source knowledge base."""

from .config import TRUSTED_DOMAINS, RAGConfig
from .indexer import IngestionPipeline
from .retriever import DisallowedURLError, Retriever
from .scheduler import IngestionScheduler
from .service import RAGService, SearchFailedError

__all__ = [
    "TRUSTED_DOMAINS",
    "DisallowedURLError",
    "IngestionPipeline",
    "IngestionScheduler",
    "RAGConfig",
    "RAGService",
    "Retriever",
    "SearchFailedError",
]
