"""Qdrant vector store wrapper.

Manages the single chunk collection used by ingestion and retrieval. Every
operation tolerates a missing backend (no ``QDRANT_URL``): ensure and search
degrade to no-ops, upsert fails loudly because it has nothing to fall back to.
"""

import logging
from typing import Any

from qdrant_client import QdrantClient
from qdrant_client.http import models as qdrant_models

logger = logging.getLogger(__name__)


class VectorStoreError(RuntimeError):
    """Vector backend missing or rejected a request."""


class VectorDimensionMismatchError(ValueError):
    """Existing collection was created for a different embedding size."""


def make_qdrant_client(url: str, api_key: str | None = None, check_compatibility: bool = True) -> QdrantClient | None:
    """Create a QdrantClient for ``url``; returns None when no URL is configured."""
    if not url:
        return None
    return QdrantClient(url=url, api_key=api_key or None, check_compatibility=check_compatibility)


class VectorIndex:
    """One Qdrant collection of chunk points.

    Points carry ``{url, title, domain, chunk_index, text}`` payloads and
    share one vector size; the first embedding of an ingestion run decides it.
    """

    def __init__(
        self,
        client: QdrantClient | None,
        collection_name: str = "islamic_chunks",
        recreate_on_mismatch: bool = False,
    ):
        self.client = client
        self.collection_name = collection_name
        self.recreate_on_mismatch = recreate_on_mismatch

    @classmethod
    def from_config(cls, server_config, rag_config) -> "VectorIndex":
        client = make_qdrant_client(
            server_config.QDRANT_URL,
            api_key=server_config.QDRANT_API_KEY,
            check_compatibility=server_config.QDRANT_CHECK_COMPATIBILITY,
        )
        return cls(client, rag_config.collection_name, rag_config.recreate_on_mismatch)

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    def ensure_collection(self, vector_size: int) -> dict[str, Any]:
        """Create the collection if missing and validate its vector size.

        Args:
            vector_size: Dimensionality of the embeddings about to be stored

        Returns:
            Status dict (``ok``, ``created``, ``recreated``, sizes)

        Raises:
            VectorDimensionMismatchError: Existing size differs and recreation is disabled
        """
        if self.client is None:
            return {"ok": False, "reason": "QDRANT_URL not set"}

        if not self.client.collection_exists(self.collection_name):
            self._create(vector_size)
            logger.info(f"[VECTOR] Created collection '{self.collection_name}' (size={vector_size}, cosine)")
            return {"ok": True, "created": True, "vector_size": vector_size}

        info = self.client.get_collection(self.collection_name)
        existing_size = _collection_vector_size(info)

        if existing_size is not None and existing_size != vector_size:
            if self.recreate_on_mismatch:
                logger.warning(
                    f"[VECTOR] Recreating collection '{self.collection_name}' "
                    f"(size {existing_size} -> {vector_size}), existing points are dropped"
                )
                self.client.delete_collection(self.collection_name)
                self._create(vector_size)
                return {
                    "ok": True,
                    "created": True,
                    "recreated": True,
                    "old_size": existing_size,
                    "new_size": vector_size,
                }

            points = f" points={info.points_count}" if info.points_count is not None else ""
            raise VectorDimensionMismatchError(
                f'Qdrant collection "{self.collection_name}" vector size mismatch: '
                f"collection={existing_size} embed={vector_size}{points}. "
                "Set QDRANT_RECREATE_COLLECTION_ON_MISMATCH=true to recreate, or adjust GEMINI_EMBED_OUTPUT_DIM."
            )

        return {"ok": True, "created": False, "vector_size": existing_size or vector_size}

    def upsert(self, points: list[dict[str, Any]]) -> int:
        """Insert or replace points by id.

        Args:
            points: Dicts with ``id``, ``vector`` and ``payload``

        Returns:
            Number of points sent

        Raises:
            VectorStoreError: Backend missing or rejected the batch (with its detail text)
        """
        if self.client is None:
            raise VectorStoreError("QDRANT_URL not set")
        if not points:
            return 0

        structs = [
            qdrant_models.PointStruct(id=point["id"], vector=point["vector"], payload=point.get("payload", {}))
            for point in points
        ]
        try:
            self.client.upsert(collection_name=self.collection_name, points=structs, wait=True)
        except Exception as e:
            raise VectorStoreError(_describe_backend_error(e, "Qdrant upsert failed")) from e

        logger.debug(f"[VECTOR] Upserted {len(structs)} point(s) into '{self.collection_name}'")
        return len(structs)

    def search(self, vector: list[float], limit: int = 6, query_filter=None) -> list[dict[str, Any]]:
        """Return up to ``limit`` nearest points as ``{id, score, payload}`` dicts.

        An unconfigured backend or an empty vector yields ``[]``.
        """
        if self.client is None or not vector:
            return []

        response = self.client.query_points(
            collection_name=self.collection_name,
            query=vector,
            limit=limit,
            query_filter=query_filter,
            with_payload=True,
            with_vectors=False,
        )
        return [{"id": hit.id, "score": float(hit.score), "payload": hit.payload or {}} for hit in response.points]

    def _create(self, vector_size: int):
        self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=qdrant_models.VectorParams(size=vector_size, distance=qdrant_models.Distance.COSINE),
        )


def _collection_vector_size(info) -> int | None:
    vectors = info.config.params.vectors
    size = getattr(vectors, "size", None)
    if size is None and isinstance(vectors, dict) and len(vectors) == 1:
        size = getattr(next(iter(vectors.values())), "size", None)
    return size


def _describe_backend_error(error: Exception, default: str) -> str:
    """Surface Qdrant's response body instead of a bare "Bad Request"."""
    message = str(error) or default
    content = getattr(error, "content", None)
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    if content and str(content) not in message:
        return f"{message} | {str(content)[:800]}"
    return message
