"""Fixed-size, overlapping character chunking."""

DEFAULT_CHUNK_SIZE = 1200
DEFAULT_CHUNK_OVERLAP = 200


def chunk_text(text: str, chunk_size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_CHUNK_OVERLAP) -> list[str]:
    """Split text into overlapping windows.

    Windows start every ``chunk_size - overlap`` characters and the last one
    may be shorter. Each window is trimmed and empty windows are dropped, so
    no chunk is empty and none is longer than ``chunk_size``.

    Args:
        text: Normalized page text
        chunk_size: Maximum characters per chunk
        overlap: Characters shared with the previous window

    Returns:
        Ordered list of chunks ([] for blank text)
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError(f"overlap must be in [0, chunk_size), got {overlap}")

    text = str(text or "")
    if not text.strip():
        return []

    chunks = []
    start = 0
    while start < len(text):
        end = min(start + chunk_size, len(text))
        chunk = text[start:end].strip()
        if chunk:
            chunks.append(chunk)
        if end >= len(text):
            break
        start = end - overlap

    return chunks
