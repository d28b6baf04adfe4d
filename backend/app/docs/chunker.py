"""Document chunker - deterministic overlapping windows."""

import re
from collections.abc import Iterator

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Collapse whitespace runs into single spaces and strip the ends."""
    return _WHITESPACE.sub(" ", text).strip()


def chunk_text(
    text: str,
    *,
    window_size: int = 1000,
    overlap: int = 200,
) -> Iterator[str]:
    """Split text into overlapping fixed-size windows.

    Pure function with no I/O or randomness. Whitespace is normalized first,
    then windows of ``window_size`` characters are emitted every
    ``window_size - overlap`` characters until the end of the text is covered.

    Args:
        text: Raw document text to chunk
        window_size: Maximum characters per chunk (default 1000)
        overlap: Characters shared by consecutive chunks (default 200)

    Yields:
        Chunk texts in document order. For normalized length L the number of
        chunks is ceil((L - overlap) / (window_size - overlap)), exactly one
        when L <= window_size and none for empty text.

    Raises:
        ValueError: If window_size <= 0 or overlap is outside [0, window_size)
    """
    if window_size <= 0:
        raise ValueError("window_size must be positive")
    if overlap < 0 or overlap >= window_size:
        raise ValueError("overlap must be in [0, window_size)")

    normalized = normalize_text(text)
    if not normalized:
        return

    stride = window_size - overlap
    length = len(normalized)
    start = 0
    while True:
        yield normalized[start : start + window_size]
        # Stop once this window reaches the end of the text
        if start + window_size >= length:
            break
        start += stride


def expected_chunk_count(length: int, *, window_size: int = 1000, overlap: int = 200) -> int:
    """Number of windows ``chunk_text`` yields for normalized text of ``length``."""
    if length <= 0:
        return 0
    if length <= window_size:
        return 1
    stride = window_size - overlap
    return -(-(length - overlap) // stride)
