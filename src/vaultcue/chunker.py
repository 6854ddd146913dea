"""Paragraph and sentence aware text splitting."""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping

from vaultcue.errors import ChunkingError
from vaultcue.models import Chunk
from vaultcue.settings import ChunkSettings

logger = logging.getLogger(__name__)

PARAGRAPH_SEPARATOR = "\n\n"
SENTENCE_SEPARATOR = " "

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")


class TextSplitter:
    """
    Splits document text into bounded-size chunks.

    Paragraphs (blank-line separated) are packed together up to
    ``chunk_size`` characters. Paragraphs that are too large on their own are
    split on sentence boundaries, and sentences that are still too large are
    cut into fixed-width slices. Finally each chunk after the first is
    prefixed with the tail of its predecessor when ``chunk_overlap`` is set.

    Example:
        splitter = TextSplitter(ChunkSettings(chunk_size=500, chunk_overlap=50))
        for chunk in splitter.split(text, {"path": "notes/a.md"}):
            print(chunk.index, len(chunk.content))
    """

    def __init__(self, settings: ChunkSettings | None = None) -> None:
        settings = settings or ChunkSettings()
        self._validate(settings)
        self.settings = settings

    def update_settings(self, settings: ChunkSettings) -> None:
        """Replace the settings; the current ones stay if validation fails."""
        self._validate(settings)
        self.settings = settings

    @staticmethod
    def _validate(settings: ChunkSettings) -> None:
        if settings.chunk_size <= 0:
            raise ChunkingError("chunk_size must be greater than 0")
        if settings.chunk_overlap < 0:
            raise ChunkingError("chunk_overlap cannot be negative")
        if settings.chunk_overlap >= settings.chunk_size:
            raise ChunkingError("chunk_overlap must be less than chunk_size")
        if settings.min_chunk_size < 0:
            raise ChunkingError("min_chunk_size cannot be negative")
        if settings.min_chunk_size > settings.chunk_size:
            raise ChunkingError("min_chunk_size must be less than or equal to chunk_size")

    def split(self, content: str, metadata: Mapping[str, Any] | None = None) -> list[Chunk]:
        """
        Split ``content`` into ordered chunks.

        Args:
            content: Document text.
            metadata: Document attributes copied into every chunk.

        Returns:
            Chunks with contiguous indices starting at 0. Empty for blank text.

        Raises:
            ChunkingError: If ``content`` is not a string.
        """
        if not isinstance(content, str):
            raise ChunkingError(
                f"Cannot split {type(content).__name__}, expected str",
                code="MALFORMED_CONTENT",
            )

        text = content.strip()
        if not text:
            return []

        size = self.settings.chunk_size
        if len(text) <= max(self.settings.min_chunk_size, size):
            pieces = [text]
        else:
            pieces = self._split_paragraphs(text)
            if not pieces:
                pieces = [text]

        return self._build_chunks(pieces, dict(metadata or {}))

    def _split_paragraphs(self, text: str) -> list[str]:
        size = self.settings.chunk_size
        pieces: list[str] = []
        buffer = ""

        for raw in _PARAGRAPH_BREAK.split(text):
            paragraph = raw.strip()
            if not paragraph:
                continue

            if len(paragraph) >= size:
                if buffer:
                    pieces.append(buffer)
                    buffer = ""
                pieces.extend(self._split_sentences(paragraph))
                continue

            if not buffer:
                buffer = paragraph
            elif len(buffer) + len(PARAGRAPH_SEPARATOR) + len(paragraph) <= size:
                buffer += PARAGRAPH_SEPARATOR + paragraph
            else:
                pieces.append(buffer)
                buffer = paragraph

        if buffer:
            pieces.append(buffer)
        return pieces

    def _split_sentences(self, paragraph: str) -> list[str]:
        size = self.settings.chunk_size
        pieces: list[str] = []
        buffer = ""

        for sentence in _SENTENCE_BREAK.split(paragraph):
            if not sentence:
                continue

            if len(sentence) > size:
                # No sentence boundary to cut on, fall back to fixed slices
                if buffer:
                    pieces.append(buffer)
                    buffer = ""
                pieces.extend(sentence[i:i + size] for i in range(0, len(sentence), size))
                continue

            if not buffer:
                buffer = sentence
            elif len(buffer) + len(SENTENCE_SEPARATOR) + len(sentence) <= size:
                buffer += SENTENCE_SEPARATOR + sentence
            else:
                pieces.append(buffer)
                buffer = sentence

        if buffer:
            pieces.append(buffer)
        return pieces

    def _build_chunks(self, pieces: list[str], metadata: dict[str, Any]) -> list[Chunk]:
        overlap = self.settings.chunk_overlap
        min_size = self.settings.min_chunk_size
        count = len(pieces)
        chunks = []

        for index, piece in enumerate(pieces):
            if len(piece) < min_size:
                logger.warning(
                    "Chunk %d of %s is shorter than min_chunk_size (%d < %d)",
                    index, metadata.get("path", "document"), len(piece), min_size,
                )

            content = piece
            prefix_len = 0
            if overlap > 0 and index > 0:
                # Always taken from the neighbour's own text, never cascaded
                prefix = pieces[index - 1][-overlap:] + PARAGRAPH_SEPARATOR
                content = prefix + piece
                prefix_len = len(prefix)

            chunk_metadata = {
                **metadata,
                "chunk_index": index,
                "chunk_count": count,
                "char_count": len(content),
            }
            chunks.append(Chunk(index=index, content=content, metadata=chunk_metadata, overlap=prefix_len))

        return chunks


def split_text(
    content: str,
    metadata: Mapping[str, Any] | None = None,
    settings: ChunkSettings | None = None,
) -> list[Chunk]:
    """Split ``content`` with a throwaway ``TextSplitter``."""
    return TextSplitter(settings).split(content, metadata)
