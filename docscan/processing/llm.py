"""Chat-model steps of document processing: text refinement and classification.

Refinement rewrites noisy OCR output into a clean, document-specific
summary suitable for embedding. Classification assigns a document type
and pulls out structured fields as JSON.
"""

import json
import re
import time
from dataclasses import dataclass, field
from typing import Any

import openai
from openai import OpenAI

from docscan.errors import ConfigError, LLMError
from docscan.utils.config import LLMConfig
from docscan.utils.logger import get_logger

logger = get_logger(__name__)

REFINE_PROMPT = """You are a document analysis expert. Extract only the information \
that is specific to this document and leave out generic content such as \
disclaimers, boilerplate instructions, standard contact details, headers, \
footers and security-feature descriptions.{type_hint}

Document text:
{text}

Respond in plain text with these sections, adapting their content to the document:

Document Type: the specific type or purpose of the document.
Core Information: a short paragraph with the essential, document-specific facts.
Detailed Specifications: further important details, grouped logically.
Reference & Identification Data: every identifier, code and number with its context.
Additional Context: anything else specific to this document.

Preserve numbers, dates, codes and names exactly as they appear. Do not use markdown."""

SHORT_REFINE_PROMPT = "Extract key information from this document: {text}..."

CLASSIFY_PROMPT = """You are an expert document analyzer. Identify the document type \
and extract its structured data.

DOCUMENT TEXT:
{text}

Choose the most specific type from: Invoice/Receipt, Resume/CV, Contract/Agreement, \
Medical Record, Financial Statement, Legal Document, Academic Paper, Report, \
Letter/Email, ID Document, Certificate, or Other (name it).

Respond ONLY with a JSON object:
{{
  "documentType": "the specific document type",
  "confidence": 0.0,
  "structuredData": {{ "fieldName": "value" }}
}}
Include only data actually present in the document."""

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_DOCUMENT_TYPE = re.compile(r"documentType[\"']?\s*:\s*[\"']([^\"']+)[\"']", re.I)


@dataclass
class ChatResult:
    """Text and bookkeeping from one chat completion."""

    text: str
    model: str
    response_id: str | None = None
    finish_reason: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None


class ChatModel:
    """Single-turn and multi-turn calls to the configured chat model.

    Args:
        config: Model name, API key and timeout.
        client: Optional preconfigured OpenAI client (used by tests).
    """

    def __init__(self, config: LLMConfig, client: OpenAI | None = None) -> None:
        self.model = config.chat_model
        self._client = client
        self._config = config

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            if not self._config.api_key:
                raise ConfigError("OpenAI API key not configured")
            self._client = OpenAI(
                api_key=self._config.api_key,
                timeout=self._config.timeout_seconds,
            )
        return self._client

    def complete(
        self,
        messages: list[dict[str, str]],
        max_tokens: int = 1000,
        temperature: float = 0.2,
    ) -> ChatResult:
        """Run a chat completion.

        Raises:
            LLMError: If the request fails or returns no text.
        """
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.OpenAIError as exc:
            raise LLMError(f"Chat request failed: {exc}") from exc

        choice = response.choices[0] if response.choices else None
        text = (choice.message.content or "").strip() if choice else ""
        if not text:
            raise LLMError("No text received from chat model")

        usage = getattr(response, "usage", None)
        return ChatResult(
            text=text,
            model=getattr(response, "model", None) or self.model,
            response_id=getattr(response, "id", None),
            finish_reason=choice.finish_reason,
            input_tokens=getattr(usage, "prompt_tokens", None),
            output_tokens=getattr(usage, "completion_tokens", None),
        )

    def ask(self, prompt: str, max_tokens: int = 1000, temperature: float = 0.2) -> ChatResult:
        return self.complete(
            [{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            temperature=temperature,
        )


@dataclass
class RefinementResult:
    """Outcome of rewriting OCR text."""

    success: bool
    processed_text: str | None
    status: str
    processing_time_ms: int
    reason: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class TextRefiner:
    """Cleans up OCR text with the chat model.

    Args:
        chat: Chat model wrapper.
        config: Length limits for prompts.
    """

    def __init__(self, chat: ChatModel, config: LLMConfig) -> None:
        self.chat = chat
        self.config = config

    def build_prompt(self, raw_text: str, document_type: str | None = None) -> str:
        type_hint = ""
        if document_type:
            type_hint = (
                f'\nThis document appears to be a "{document_type}". '
                "Take this type into account."
            )
        prompt = REFINE_PROMPT.format(
            type_hint=type_hint, text=raw_text[: self.config.max_input_chars]
        )
        if len(prompt) > self.config.max_prompt_chars:
            prompt = SHORT_REFINE_PROMPT.format(
                text=raw_text[: self.config.short_prompt_chars]
            )
        return prompt

    def refine(
        self,
        raw_text: str,
        document_id: str,
        document_type: str | None = None,
    ) -> RefinementResult:
        """Rewrite OCR text; never raises.

        Blank input is skipped as a failure. Text shorter than the
        configured minimum is returned unchanged as a skipped success.
        """
        start = time.time()

        def _elapsed() -> int:
            return int((time.time() - start) * 1000)

        if not raw_text or not raw_text.strip():
            logger.warning("No text to refine for document %s", document_id)
            return RefinementResult(
                success=False,
                processed_text=None,
                status="skipped",
                processing_time_ms=_elapsed(),
                reason="Empty input text",
            )

        if len(raw_text) < self.config.min_refine_chars:
            return RefinementResult(
                success=True,
                processed_text=raw_text,
                status="skipped",
                processing_time_ms=_elapsed(),
                reason="Text too short",
            )

        prompt = self.build_prompt(raw_text, document_type)
        try:
            result = self.chat.ask(prompt, max_tokens=2000, temperature=0.1)
        except (LLMError, ConfigError) as exc:
            logger.error("Refinement failed for document %s: %s", document_id, exc)
            return RefinementResult(
                success=False,
                processed_text=None,
                status="failure",
                processing_time_ms=_elapsed(),
                error=str(exc),
            )

        logger.info(
            "Refined document %s: %d -> %d characters",
            document_id,
            len(raw_text),
            len(result.text),
        )
        return RefinementResult(
            success=True,
            processed_text=result.text,
            status="success",
            processing_time_ms=_elapsed(),
            metadata={
                "model": result.model,
                "response_id": result.response_id,
                "finish_reason": result.finish_reason,
                "input_tokens": result.input_tokens,
                "output_tokens": result.output_tokens,
            },
        )


@dataclass
class ClassificationResult:
    """Document type and structured fields."""

    success: bool
    document_type: str
    structured_data: dict[str, Any]
    confidence: float


class DocumentClassifier:
    """Classifies a document and extracts structured fields as JSON."""

    def __init__(self, chat: ChatModel, config: LLMConfig) -> None:
        self.chat = chat
        self.config = config

    @staticmethod
    def parse_response(response_text: str, source_text: str) -> ClassificationResult:
        """Parse the model's JSON answer, tolerating surrounding prose."""
        match = _JSON_OBJECT.search(response_text)
        try:
            data = json.loads(match.group(0) if match else response_text)
            if not isinstance(data, dict):
                raise ValueError("classification is not a JSON object")
        except ValueError:
            type_match = _DOCUMENT_TYPE.search(response_text)
            return ClassificationResult(
                success=False,
                document_type=type_match.group(1) if type_match else "unknown",
                structured_data={"rawText": source_text[:500] + "..."},
                confidence=0.3,
            )

        structured = data.get("structuredData")
        return ClassificationResult(
            success=True,
            document_type=data.get("documentType") or "unknown",
            structured_data=structured if isinstance(structured, dict) else {},
            confidence=float(data.get("confidence") or 0.5),
        )

    def classify(self, text: str, document_id: str) -> ClassificationResult:
        """Classify ``text``; failures produce an unsuccessful result."""
        if not text or not text.strip():
            return ClassificationResult(False, "unknown", {}, 0.0)

        prompt = CLASSIFY_PROMPT.format(text=text[: self.config.classify_input_chars])
        try:
            result = self.chat.ask(prompt, max_tokens=1500, temperature=0.2)
        except (LLMError, ConfigError) as exc:
            logger.error("Classification failed for document %s: %s", document_id, exc)
            return ClassificationResult(False, "unknown", {}, 0.0)

        classification = self.parse_response(result.text, text)
        logger.info(
            "Document %s classified as %s (confidence %.2f)",
            document_id,
            classification.document_type,
            classification.confidence,
        )
        return classification
