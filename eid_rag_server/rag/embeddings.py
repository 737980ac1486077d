"""Gemini embedding client."""

import logging

from ..backends import embed_text

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Turns chunks and queries into dense vectors through Gemini ``embedContent``.

    Upstream errors (quota, auth, network) propagate unchanged; retry policy
    belongs to the caller.
    """

    def __init__(self, server_config, model: str = "gemini-embedding-001", output_dim: int | None = None):
        self.server_config = server_config
        self.model = model
        self.output_dim = output_dim

    @property
    def is_configured(self) -> bool:
        return bool(self.server_config.GEMINI_API_KEY)

    def embed(self, text: str) -> list[float]:
        """Embed text; blank input returns an empty vector without a request."""
        value = str(text or "").strip()
        if not value:
            return []

        vector = embed_text(self.server_config, self.model, value, output_dimensionality=self.output_dim)
        logger.debug(f"[EMBED] {self.model} -> {len(vector)} dims for {len(value)} chars")
        return vector
