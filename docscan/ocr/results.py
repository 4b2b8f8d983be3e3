"""Normalization of per-provider OCR API results."""

from dataclasses import dataclass, field
from typing import Any

DEFAULT_CONFIDENCE = 0.8
DEFAULT_ENTITY_CONFIDENCE = 0.5


@dataclass
class OCRResult:
    """Text extracted from one document by one provider."""

    text: str
    confidence: float
    provider: str
    entities: list[dict[str, Any]] = field(default_factory=list)
    raw_response: dict[str, Any] = field(default_factory=dict)


def average_block_confidence(pages: list[dict[str, Any]] | None) -> float | None:
    """Average the ``confidence`` of every block on every page.

    Returns:
        The mean, or ``None`` when no blocks are present.
    """
    if not pages:
        return None
    scores = [
        float(block.get("confidence") or 0.0)
        for page in pages
        for block in page.get("blocks") or []
    ]
    if not scores:
        return None
    return sum(scores) / len(scores)


def _text_of(item: Any) -> str:
    if isinstance(item, dict):
        return str(item.get("text") or item.get("content") or "")
    return str(item)


def _entities_of(data: dict[str, Any]) -> list[dict[str, Any]]:
    return [
        {
            "text": entity.get("value") or entity.get("text"),
            "description": entity.get("label") or entity.get("type"),
            "confidence": entity.get("confidence") or DEFAULT_ENTITY_CONFIDENCE,
        }
        for entity in data.get("entities") or []
    ]


def provider_error(result: dict[str, Any]) -> str | None:
    """Return the provider's error message, if it reported one."""
    error = result.get("error")
    if isinstance(error, dict):
        return str(error.get("message") or error)
    if error:
        return str(error)
    if result.get("status") == "fail" or result.get("final_status") == "failed":
        return f"provider status {result.get('status') or result.get('final_status')}"
    return None


def parse_provider_result(provider: str, result: dict[str, Any]) -> OCRResult:
    """Turn one provider's JSON result into an :class:`OCRResult`.

    Structured ``data`` is preferred; otherwise ``raw_text`` and then the
    top-level ``text`` are used. An empty ``text`` means the provider
    produced nothing usable.
    """
    text = ""
    entities: list[dict[str, Any]] = []

    data = result.get("data")
    if not result.get("error") and isinstance(data, dict):
        if data.get("text"):
            text = str(data["text"])
        elif data.get("texts"):
            text = "\n\n".join(_text_of(item) for item in data["texts"])
        entities = _entities_of(data)

    if not text.strip():
        text = str(result.get("raw_text") or result.get("text") or "")

    confidence = result.get("confidence")
    if confidence is None:
        confidence = average_block_confidence(result.get("pages"))
    if confidence is None:
        confidence = DEFAULT_CONFIDENCE

    return OCRResult(
        text=text,
        confidence=float(confidence),
        provider=provider,
        entities=entities,
        raw_response=result,
    )
