"""Tests for the chat model wrapper, refinement, classification and embeddings."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import openai
import pytest

from docscan.errors import ConfigError, LLMError
from docscan.processing.embeddings import EmbeddingClient
from docscan.processing.llm import (
    ChatModel,
    ChatResult,
    DocumentClassifier,
    TextRefiner,
)
from docscan.utils.config import LLMConfig


def _completion(text: str | None) -> SimpleNamespace:
    return SimpleNamespace(
        id="resp-1",
        model="gpt-3.5-turbo-0125",
        choices=[
            SimpleNamespace(
                message=SimpleNamespace(content=text), finish_reason="stop"
            )
        ],
        usage=SimpleNamespace(prompt_tokens=120, completion_tokens=40),
    )


def _chat_client(text: str | None = "answer") -> MagicMock:
    client = MagicMock()
    client.chat.completions.create.return_value = _completion(text)
    return client


class TestChatModel:
    """Tests for chat completions."""

    def test_complete(self) -> None:
        client = _chat_client("  Hello there  ")
        result = ChatModel(LLMConfig(api_key="k"), client=client).ask(
            "Hi", max_tokens=50, temperature=0.1
        )

        assert result.text == "Hello there"
        assert result.model == "gpt-3.5-turbo-0125"
        assert result.input_tokens == 120
        assert result.output_tokens == 40
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["messages"] == [{"role": "user", "content": "Hi"}]
        assert kwargs["max_tokens"] == 50
        assert kwargs["temperature"] == 0.1

    def test_empty_reply(self) -> None:
        model = ChatModel(LLMConfig(api_key="k"), client=_chat_client(None))
        with pytest.raises(LLMError, match="No text"):
            model.ask("Hi")

    def test_api_error_wrapped(self) -> None:
        client = MagicMock()
        client.chat.completions.create.side_effect = openai.OpenAIError("rate limited")
        model = ChatModel(LLMConfig(api_key="k"), client=client)
        with pytest.raises(LLMError, match="rate limited"):
            model.ask("Hi")

    def test_missing_key(self) -> None:
        with pytest.raises(ConfigError):
            ChatModel(LLMConfig()).ask("Hi")


class TestTextRefiner:
    """Tests for OCR text refinement."""

    def _refiner(self, chat: MagicMock | None = None) -> TextRefiner:
        return TextRefiner(chat or MagicMock(), LLMConfig(api_key="k"))

    def test_empty_input_is_failure(self) -> None:
        result = self._refiner().refine("   ", "doc-1")
        assert result.success is False
        assert result.status == "skipped"

    def test_short_text_returned_unchanged(self) -> None:
        chat = MagicMock()
        result = self._refiner(chat).refine("Short receipt", "doc-1")
        assert result.success is True
        assert result.processed_text == "Short receipt"
        assert result.status == "skipped"
        chat.ask.assert_not_called()

    def test_refines_long_text(self) -> None:
        chat = MagicMock()
        chat.ask.return_value = ChatResult(text="Document Type: Invoice", model="m")
        result = self._refiner(chat).refine("x" * 500, "doc-1", "Invoice")

        assert result.success is True
        assert result.processed_text == "Document Type: Invoice"
        prompt = chat.ask.call_args.args[0]
        assert 'appears to be a "Invoice"' in prompt
        assert chat.ask.call_args.kwargs == {"max_tokens": 2000, "temperature": 0.1}

    def test_llm_failure_reported(self) -> None:
        chat = MagicMock()
        chat.ask.side_effect = LLMError("timeout")
        result = self._refiner(chat).refine("x" * 500, "doc-1")
        assert result.success is False
        assert result.status == "failure"
        assert result.error == "timeout"

    def test_input_truncated(self) -> None:
        refiner = self._refiner()
        prompt = refiner.build_prompt("a" * 10000)
        assert "a" * 10000 in prompt
        assert prompt.startswith("You are a document analysis expert")

    def test_short_prompt_for_long_text(self) -> None:
        refiner = self._refiner()
        prompt = refiner.build_prompt("b" * 20000)
        assert prompt.startswith("Extract key information from this document: ")
        assert prompt.count("b") == 5000


class TestDocumentClassifier:
    """Tests for classification parsing."""

    def test_parse_json_with_prose(self) -> None:
        response = (
            "Here is the result:\n"
            '{"documentType": "Invoice/Receipt", "confidence": 0.92, '
            '"structuredData": {"total": "$12.50"}}\nThanks!'
        )
        result = DocumentClassifier.parse_response(response, "source")
        assert result.success is True
        assert result.document_type == "Invoice/Receipt"
        assert result.confidence == 0.92
        assert result.structured_data == {"total": "$12.50"}

    def test_parse_failure_recovers_type(self) -> None:
        response = '{"documentType": "Contract/Agreement", "confidence": 0.9, oops'
        result = DocumentClassifier.parse_response(response, "z" * 600)
        assert result.success is False
        assert result.document_type == "Contract/Agreement"
        assert result.confidence == 0.3
        assert result.structured_data == {"rawText": "z" * 500 + "..."}

    def test_parse_failure_unknown(self) -> None:
        result = DocumentClassifier.parse_response("no idea", "text")
        assert result.document_type == "unknown"

    def test_classify_truncates_input(self) -> None:
        chat = MagicMock()
        chat.ask.return_value = ChatResult(
            text='{"documentType": "Report", "structuredData": {}}', model="m"
        )
        classifier = DocumentClassifier(chat, LLMConfig(api_key="k"))

        result = classifier.classify("c" * 12000, "doc-1")

        assert result.document_type == "Report"
        assert result.confidence == 0.5
        prompt = chat.ask.call_args.args[0]
        assert "c" * 10000 in prompt
        assert "c" * 10001 not in prompt
        assert chat.ask.call_args.kwargs == {"max_tokens": 1500, "temperature": 0.2}

    def test_classify_llm_error(self) -> None:
        chat = MagicMock()
        chat.ask.side_effect = LLMError("down")
        result = DocumentClassifier(chat, LLMConfig(api_key="k")).classify("t", "d")
        assert result.success is False


class TestEmbeddingClient:
    """Tests for embedding requests."""

    def _client(self, vectors: list[list[float]]) -> MagicMock:
        client = MagicMock()
        # Returned out of order to check sorting by index.
        client.embeddings.create.return_value = SimpleNamespace(
            data=[
                SimpleNamespace(index=i, embedding=v)
                for i, v in reversed(list(enumerate(vectors)))
            ]
        )
        return client

    def test_embed_preserves_order(self) -> None:
        client = self._client([[0.1, 0.2], [0.3, 0.4]])
        embedder = EmbeddingClient(LLMConfig(api_key="k"), client=client)

        vectors = embedder.embed([" first ", "second"])

        assert vectors == [[0.1, 0.2], [0.3, 0.4]]
        kwargs = client.embeddings.create.call_args.kwargs
        assert kwargs == {"model": "text-embedding-3-small", "input": ["first", "second"]}

    def test_blank_text_rejected(self) -> None:
        embedder = EmbeddingClient(LLMConfig(api_key="k"), client=MagicMock())
        with pytest.raises(ValueError):
            embedder.embed(["ok", "  "])

    def test_empty_list(self) -> None:
        embedder = EmbeddingClient(LLMConfig(api_key="k"), client=MagicMock())
        assert embedder.embed([]) == []

    def test_count_mismatch(self) -> None:
        client = self._client([[0.1]])
        embedder = EmbeddingClient(LLMConfig(api_key="k"), client=client)
        with pytest.raises(LLMError):
            embedder.embed(["a", "b"])

    def test_api_error(self) -> None:
        client = MagicMock()
        client.embeddings.create.side_effect = openai.OpenAIError("quota")
        embedder = EmbeddingClient(LLMConfig(api_key="k"), client=client)
        with pytest.raises(LLMError, match="quota"):
            embedder.embed_one("text")

    def test_missing_key(self) -> None:
        with pytest.raises(ConfigError):
            EmbeddingClient(LLMConfig()).embed_one("text")
