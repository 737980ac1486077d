"""LangChain tools backed by the knowledge search service.

Lets an agent (or any LangChain tool-calling loop) ask grounded questions
against the trusted-source index.
"""

from typing import TYPE_CHECKING

from langchain_core.tools import Tool
from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .rag.service import RAGService


class KnowledgeSearchInput(BaseModel):
    """Input schema for the knowledge search tool."""

    query: str = Field(description="The question to answer (e.g., 'What is Tawheed?', 'Pillars of faith')")


class RelatedQuestionsInput(BaseModel):
    """Input schema for the related questions tool."""

    topic: str = Field(description="Topic to suggest follow-up questions for (e.g., 'Sunnah')")


def format_search_result(result) -> str:
    """Render a SearchResult as plain text with numbered sources."""
    lines = [result.answer.strip() or "(no answer)", ""]
    if result.sources:
        lines.append("Sources:")
        for i, source in enumerate(result.sources, start=1):
            lines.append(f"{i}. {source.title} - {source.url}")
    lines.append(f"Confidence: {result.confidence:.2f}")
    return "\n".join(lines)


def create_knowledge_search_tool(service: "RAGService") -> Tool:
    """Create a tool that answers questions from the trusted knowledge base.

    Args:
        service: RAGService used to retrieve sources and generate the answer

    Returns:
        LangChain Tool for knowledge search

    Example:
        >>> from eid_rag_server import RAGService, ServerConfig
        >>> from eid_rag_server.rag import RAGConfig
        >>> service = RAGService.from_config(ServerConfig.from_env(), RAGConfig.from_env())
        >>> tools = [create_knowledge_search_tool(service)]
    """

    def _search(query: str) -> str:
        try:
            return format_search_result(service.search(query))
        except Exception as e:
            return f"Error searching knowledge: {e}"

    return Tool(
        name="search_islamic_knowledge",
        description="Answer a question using content from trusted Islamic websites. Returns the answer, the source titles and URLs it is based on, and a confidence score.",
        func=_search,
        args_schema=KnowledgeSearchInput,
    )


def create_related_questions_tool(service: "RAGService") -> Tool:
    """Create a tool that suggests follow-up questions for a topic."""

    def _related(topic: str) -> str:
        questions = service.related_questions(topic)
        if not questions:
            return "No related questions available."
        return "\n".join(f"- {q}" for q in questions)

    return Tool(
        name="related_questions",
        description="Suggest up to five related questions about a topic to continue learning.",
        func=_related,
        args_schema=RelatedQuestionsInput,
    )


__all__ = [
    "KnowledgeSearchInput",
    "RelatedQuestionsInput",
    "create_knowledge_search_tool",
    "create_related_questions_tool",
    "format_search_result",
]
