"""Eid RAG Server - question answering grounded in trusted Islamic knowledge sources."""

from .config import ServerConfig
from .rag.config import RAGConfig
from .rag.service import RAGService, SearchFailedError
from .server import RAGServer
from .tools import create_knowledge_search_tool, create_related_questions_tool

__version__ = "0.1.0"
__all__ = [
    "RAGConfig",
    "RAGServer",
    "RAGService",
    "SearchFailedError",
    "ServerConfig",
    "create_knowledge_search_tool",
    "create_related_questions_tool",
]
