"""
Fixed-Window Text Chunker

Splits extracted document text into bounded, overlapping windows suitable for
embedding. Windows start at offset 0 and advance by ``chunk_size - overlap``
characters, so every chunk after the first repeats the last ``overlap``
characters of its predecessor. Generation stops at the first window that
reaches the end of the text.
"""

import logging
from typing import Iterator, Optional
from dataclasses import dataclass

from .config import DEFAULT_CHUNK_SIZE, DEFAULT_CHUNK_OVERLAP
from .errors import InvalidConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class ChunkConfig:
    """Configuration for chunking parameters (in characters)."""
    chunk_size: int = DEFAULT_CHUNK_SIZE
    overlap: int = DEFAULT_CHUNK_OVERLAP

    def validate(self) -> None:
        if self.chunk_size <= 0:
            raise InvalidConfigurationError(
                f"chunk_size must be positive, got {self.chunk_size}"
            )
        if self.overlap < 0:
            raise InvalidConfigurationError(
                f"overlap must not be negative, got {self.overlap}"
            )
        if self.overlap >= self.chunk_size:
            raise InvalidConfigurationError(
                f"overlap ({self.overlap}) must be smaller than chunk_size ({self.chunk_size})"
            )

    @property
    def step(self) -> int:
        return self.chunk_size - self.overlap


class TextChunker:
    """
    Splits text into overlapping fixed-size windows.

    The configuration is validated on construction, so a chunker that exists
    can never loop forever.
    """

    def __init__(self, config: Optional[ChunkConfig] = None):
        self.config = config or ChunkConfig()
        self.config.validate()

    def iter_chunks(self, text: str) -> Iterator[str]:
        """Yield the windows of *text* in order."""
        size = self.config.chunk_size
        step = self.config.step
        length = len(text)

        start = 0
        while start < length:
            end = min(start + size, length)
            yield text[start:end]
            if end == length:
                break
            start += step

    def chunk(self, text: str) -> list[str]:
        """Return all windows of *text* (empty list for empty text)."""
        chunks = list(self.iter_chunks(text))
        logger.debug(
            f"Split {len(text)} chars into {len(chunks)} chunks "
            f"(size={self.config.chunk_size}, overlap={self.config.overlap})"
        )
        return chunks

    def expected_count(self, length: int) -> int:
        """Number of chunks produced for a text of *length* characters."""
        if length <= 0:
            return 0
        remaining = max(length - self.config.overlap, 0)
        return max(1, -(-remaining // self.config.step))

    def reconstruct(self, chunks: list[str]) -> str:
        """Undo the overlap: rebuild the original text from ordered chunks."""
        if not chunks:
            return ""
        step = self.config.step
        return "".join(c[:step] for c in chunks[:-1]) + chunks[-1]


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[str]:
    """
    Split *text* into overlapping windows.

    Args:
        text: Normalized document text
        chunk_size: Maximum characters per chunk
        overlap: Characters shared between consecutive chunks

    Returns:
        Ordered list of chunks

    Raises:
        InvalidConfigurationError: if overlap >= chunk_size or either is out of range
    """
    return TextChunker(ChunkConfig(chunk_size=chunk_size, overlap=overlap)).chunk(text)
