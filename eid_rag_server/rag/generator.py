"""Grounded answer generation over an ordered chain of Gemini models."""

import logging
from dataclasses import dataclass
from typing import Callable

from ..backends import GeminiAPIError, generate_text
from .models import Source

logger = logging.getLogger(__name__)

PROMPT_INSTRUCTIONS = [
    "Provide a comprehensive and accurate answer based only on the sources",
    "Use proper Islamic terminology",
    "Include relevant Quranic verses or hadith if mentioned in sources",
    "Be respectful and educational",
    "If the sources don't contain enough information, say so explicitly",
    "Keep the answer clear and well-structured",
]

RELATED_QUESTIONS_LIMIT = 5


class GenerationError(RuntimeError):
    """Every candidate model failed, or a failure was not fallback-eligible."""

    def __init__(self, message: str, attempts: list[tuple[str, str]] | None = None):
        super().__init__(message)
        self.attempts = attempts or []


@dataclass
class GeneratedAnswer:
    text: str
    model_used: str


def build_prompt(query: str, sources: list[Source]) -> str:
    """Assemble the grounding prompt: role, question, sources, instructions."""
    context = "\n\n".join(f"Source: {source.title}\nContent: {source.content}" for source in sources)
    instructions = "\n".join(f"{i}. {line}" for i, line in enumerate(PROMPT_INSTRUCTIONS, start=1))
    return (
        "You are an Islamic scholar assistant. Answer the following question based on the provided "
        "sources from trusted Islamic websites.\n\n"
        f"Question: {query}\n\n"
        f"Sources:\n{context}\n\n"
        f"Instructions:\n{instructions}\n\n"
        "Answer:"
    )


def build_related_prompt(topic: str) -> str:
    return (
        f"Generate {RELATED_QUESTIONS_LIMIT} related Islamic questions about: {topic}\n\n"
        "The questions should be:\n"
        "1. Relevant to the topic\n"
        "2. Educational and meaningful\n"
        "3. Appropriate for Muslims and non-Muslims\n"
        "4. Cover different aspects of the topic\n\n"
        "Return only the questions, one per line, without numbering."
    )


def is_fallback_eligible(error: Exception) -> bool:
    """True when the next model in the chain may be tried.

    Only "model not found" (404) and "rate/quota limited" (429) qualify;
    authentication, bad requests and network failures are fatal.
    """
    status = getattr(error, "status", None)
    if status is not None:
        return status in (404, 429)

    message = str(error).lower()
    if isinstance(error, GeminiAPIError):
        message = f"{message} {error.status_text} {error.body}".lower()
    return any(marker in message for marker in ("not_found", "not found", "resource_exhausted", "quota", "rate limit"))


class AnswerGenerator:
    """Generates answers with the primary chat model and falls back on eligible errors."""

    def __init__(
        self,
        server_config,
        primary_model: str | None = None,
        fallback_models: list[str] | None = None,
        generate_fn: Callable[[str, str], str] | None = None,
    ):
        """Initialize the generator.

        Args:
            server_config: ServerConfig with Gemini credentials and model names
            primary_model: Model tried first (default: config.GEMINI_CHAT_MODEL)
            fallback_models: Models tried in order after the primary (default: config.fallback_models)
            generate_fn: ``(model, prompt) -> text`` override, defaults to the Gemini REST call
        """
        self.server_config = server_config
        self.primary_model = primary_model or server_config.GEMINI_CHAT_MODEL
        self.fallback_models = server_config.fallback_models if fallback_models is None else fallback_models
        self._generate = generate_fn or (lambda model, prompt: generate_text(server_config, model, prompt))

    def candidate_models(self) -> list[str]:
        models: list[str] = []
        for model in [self.primary_model, *self.fallback_models]:
            model = str(model or "").strip()
            if model and model not in models:
                models.append(model)
        return models

    def complete(self, prompt: str) -> GeneratedAnswer:
        """Run ``prompt`` through the model chain.

        Raises:
            GenerationError: A fatal error, or every candidate failed
        """
        attempts: list[tuple[str, str]] = []
        last_error: Exception | None = None

        for model in self.candidate_models():
            try:
                text = self._generate(model, prompt)
            except Exception as e:
                attempts.append((model, str(e)))
                last_error = e
                if not is_fallback_eligible(e):
                    logger.error(f"[GENERATOR] {model} failed: {e}")
                    raise GenerationError(f"Answer generation failed on {model}: {e}", attempts) from e
                logger.warning(f"[GENERATOR] {model} unavailable ({e}), trying next model")
                continue

            if attempts:
                logger.info(f"[GENERATOR] Answered with fallback model {model}")
            return GeneratedAnswer(text=text or "", model_used=model)

        summary = "; ".join(f"{model}: {error}" for model, error in attempts) or "no models configured"
        raise GenerationError(f"All models failed ({summary})", attempts) from last_error

    def generate(self, query: str, sources: list[Source]) -> GeneratedAnswer:
        """Answer ``query`` grounded in ``sources``."""
        return self.complete(build_prompt(query, sources))

    def related_questions(self, topic: str) -> list[str]:
        """Suggest up to five follow-up questions; returns ``[]`` on any failure."""
        try:
            answer = self.complete(build_related_prompt(topic))
        except Exception as e:
            logger.warning(f"[GENERATOR] Related questions failed for '{topic}': {e}")
            return []

        questions = [line.strip() for line in answer.text.splitlines()]
        return [q for q in questions if q][:RELATED_QUESTIONS_LIMIT]
