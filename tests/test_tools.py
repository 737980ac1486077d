"""Tests for the LangChain tool wrappers."""

import pytest

from eid_rag_server.rag.models import SearchResult, Source
from eid_rag_server.tools import create_knowledge_search_tool, create_related_questions_tool, format_search_result


class StubService:
    def __init__(self, fail=False):
        self.fail = fail

    def search(self, query):
        if self.fail:
            raise RuntimeError("Failed to search knowledge")
        source = Source(title="The Fundamentals of Tawheed", url="https://troid.org/t", domain="troid.org", content="c")
        return SearchResult(query, "Tawheed is the oneness of Allah.", [source], 0.35, 12, "primary")

    def related_questions(self, topic):
        return [] if self.fail else ["What is Shirk?", "What is Ibadah?"]


@pytest.mark.unit
class TestKnowledgeSearchTool:
    """Test create_knowledge_search_tool."""

    def test_tool_metadata(self):
        tool = create_knowledge_search_tool(StubService())

        assert tool.name == "search_islamic_knowledge"
        assert "query" in tool.args

    def test_formats_answer_with_sources(self):
        tool = create_knowledge_search_tool(StubService())

        result = tool.func(query="What is Tawheed?")

        assert result.startswith("Tawheed is the oneness of Allah.")
        assert "1. The Fundamentals of Tawheed - https://troid.org/t" in result
        assert "Confidence: 0.35" in result

    def test_errors_are_returned_as_text(self):
        tool = create_knowledge_search_tool(StubService(fail=True))

        assert tool.func(query="What is Tawheed?").startswith("Error searching knowledge")

    def test_format_without_sources(self):
        result = SearchResult("q", "", [], 0.1, 5)
        assert format_search_result(result) == "(no answer)\n\nConfidence: 0.10"


@pytest.mark.unit
class TestRelatedQuestionsTool:
    """Test create_related_questions_tool."""

    def test_lists_questions(self):
        tool = create_related_questions_tool(StubService())
        assert tool.func(topic="Tawheed") == "- What is Shirk?\n- What is Ibadah?"

    def test_empty(self):
        tool = create_related_questions_tool(StubService(fail=True))
        assert tool.func(topic="Tawheed") == "No related questions available."
