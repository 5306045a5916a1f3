# infrastructure/chunker.py
"""Deterministic overlapping text chunker"""
import logging
import re
from typing import List, Optional

from docintel.config import settings
from docintel.core.domain import TextChunk
from docintel.core.errors import InvalidConfiguration

logger = logging.getLogger(settings.LOGGER_NAME)

# Boundary candidates, strongest first. Each match ends where the next chunk may start.
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE_END = re.compile(r"[.!?。؟][\"')\]]*\s+")
_WHITESPACE = re.compile(r"\s+")


class TextChunker:
    """
    Splits text into overlapping character windows.

    Each chunk ends at the strongest boundary (paragraph, sentence, whitespace)
    found in the last `boundary_window` fraction of the window, or is cut hard
    at `chunk_size` when none exists. The next chunk starts exactly `overlap`
    characters before the previous chunk's end.

    Output is a pure function of (text, chunk_size, overlap).
    """

    def __init__(self, boundary_window: float = 0.2):
        if not 0.0 < boundary_window < 1.0:
            raise InvalidConfiguration(f"boundary_window must be in (0, 1), got {boundary_window}")
        self.boundary_window = boundary_window

    @staticmethod
    def validate(chunk_size: int, overlap: int) -> None:
        if chunk_size <= 0:
            raise InvalidConfiguration(f"chunk_size must be positive, got {chunk_size}")
        if overlap < 0:
            raise InvalidConfiguration(f"overlap must not be negative, got {overlap}")
        if overlap >= chunk_size:
            raise InvalidConfiguration(
                f"overlap ({overlap}) must be smaller than chunk_size ({chunk_size})"
            )

    def chunk(self, text: str, chunk_size: int, overlap: int) -> List[TextChunk]:
        self.validate(chunk_size, overlap)
        if not text or not text.strip():
            return []

        length = len(text)
        chunks: List[TextChunk] = []
        start = 0

        while start < length:
            hard_end = min(start + chunk_size, length)
            end = hard_end
            if hard_end < length:
                end = self._find_boundary(text, start, hard_end, chunk_size, overlap) or hard_end

            piece = text[start:end]
            if piece.strip():
                chunks.append(TextChunk(ordinal=len(chunks), text=piece, start=start, end=end))

            if end >= length:
                break
            start = end - overlap

        logger.debug(f"[CHUNK] {length} chars -> {len(chunks)} chunks (size={chunk_size}, overlap={overlap})")
        return chunks

    def _find_boundary(self, text: str, start: int, hard_end: int,
                       chunk_size: int, overlap: int) -> Optional[int]:
        """Last boundary end inside the tail window that still moves past the overlap."""
        window = max(1, int(chunk_size * self.boundary_window))
        lower = max(start + overlap + 1, hard_end - window)
        if lower > hard_end:
            return None

        segment = text[lower:hard_end]
        for pattern in (_PARAGRAPH_BREAK, _SENTENCE_END, _WHITESPACE):
            best = None
            for match in pattern.finditer(segment):
                best = match
            if best is not None:
                return lower + best.end()
        return None
