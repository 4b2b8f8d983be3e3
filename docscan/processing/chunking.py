"""Splitting document text into embedding-sized chunks.

Token counts are estimated at four characters per token, which is close
enough for English text and avoids a tokenizer dependency.
"""

import math
import re
from dataclasses import dataclass
from typing import Any

CHARS_PER_TOKEN = 4
MIN_STRUCTURED_CHUNK_CHARS = 50
MIN_STRUCTURED_CHUNKS = 2

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_HIGH_IMPORTANCE_KEYWORDS = ("total", "summary", "conclusion", "agreement", "important")


@dataclass
class Chunk:
    """A piece of document text with its position and importance."""

    text: str
    index: int
    importance: str

    @property
    def tokens_count(self) -> int:
        return estimate_tokens(self.text)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def chunk_text(text: str, max_tokens: int = 1000, overlap: int = 200) -> list[str]:
    """Split text on sentence boundaries into chunks of at most ``max_tokens``.

    Each new chunk starts with the last ``ceil(overlap / 4)`` words of the
    previous one. A single sentence longer than the budget becomes its own
    oversized chunk.

    Args:
        text: Text to split.
        max_tokens: Estimated token budget per chunk.
        overlap: Estimated tokens carried over between chunks.

    Returns:
        List of chunk strings, in document order.
    """
    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]
    chunks: list[str] = []
    current = ""

    for sentence in sentences:
        sentence = sentence + "."
        candidate = f"{current} {sentence}" if current else sentence

        if estimate_tokens(candidate) > max_tokens and current:
            chunks.append(current.strip())
            words = current.split(" ")
            keep = min(math.ceil(overlap / CHARS_PER_TOKEN), len(words))
            overlap_text = " ".join(words[len(words) - keep :])
            current = f"{overlap_text} {sentence}" if overlap_text else sentence
        else:
            current = candidate

    if current.strip():
        chunks.append(current.strip())
    return chunks


def _flatten(value: dict[str, Any] | list[Any]) -> str:
    items = value.items() if isinstance(value, dict) else enumerate(value)
    return "\n".join(f"{key}: {item}" for key, item in items)


def structured_chunks(data: dict[str, Any] | None) -> list[str]:
    """Build one chunk per substantial section of classifier output.

    Returns:
        The chunks, or an empty list when fewer than two sections are
        substantial enough to stand alone.
    """
    if not isinstance(data, dict):
        return []

    chunks: list[str] = []
    for key, value in data.items():
        if isinstance(value, str) and len(value) > MIN_STRUCTURED_CHUNK_CHARS:
            chunks.append(f"{key.upper()}: {value}")
        elif isinstance(value, dict | list) and value:
            nested = _flatten(value)
            if len(nested) > MIN_STRUCTURED_CHUNK_CHARS:
                chunks.append(f"{key.upper()}:\n{nested}")

    if len(chunks) < MIN_STRUCTURED_CHUNKS:
        return []
    return chunks


def assign_importance(chunks: list[str]) -> list[Chunk]:
    """Tag chunks ``high``, ``medium`` or ``low``.

    The first two chunks are high and the last two low; a chunk naming a
    total, summary, conclusion, agreement or something important is
    always high.
    """
    tagged: list[Chunk] = []
    for index, text in enumerate(chunks):
        if index < 2:
            importance = "high"
        elif index >= len(chunks) - 2:
            importance = "low"
        else:
            importance = "medium"

        lowered = text.lower()
        if any(keyword in lowered for keyword in _HIGH_IMPORTANCE_KEYWORDS):
            importance = "high"

        tagged.append(Chunk(text=text, index=index, importance=importance))
    return tagged


def build_chunks(
    text: str,
    structured_data: dict[str, Any] | None = None,
    max_tokens: int = 1000,
    overlap: int = 200,
) -> list[Chunk]:
    """Prefer structured sections, fall back to sentence chunking."""
    pieces = structured_chunks(structured_data)
    if not pieces:
        pieces = chunk_text(text, max_tokens, overlap)
    return assign_importance(pieces)
