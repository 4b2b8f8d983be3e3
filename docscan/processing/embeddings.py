"""Text embeddings through the OpenAI embeddings endpoint."""

import openai
from openai import OpenAI

from docscan.errors import ConfigError, LLMError
from docscan.utils.config import LLMConfig
from docscan.utils.logger import get_logger

logger = get_logger(__name__)


class EmbeddingClient:
    """Creates embedding vectors for text.

    Args:
        config: Model name, API key and timeout.
        client: Optional preconfigured OpenAI client (used by tests).
    """

    def __init__(self, config: LLMConfig, client: OpenAI | None = None) -> None:
        self.model = config.embedding_model
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

    def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts in one request, preserving order.

        Raises:
            ValueError: If any text is blank.
            LLMError: If the API call fails or returns no vectors.
        """
        if not texts:
            return []
        cleaned = [t.strip() for t in texts]
        if not all(cleaned):
            raise ValueError("No text provided for embedding")

        try:
            response = self.client.embeddings.create(model=self.model, input=cleaned)
        except openai.OpenAIError as exc:
            raise LLMError(f"Embedding request failed: {exc}") from exc

        vectors = [item.embedding for item in sorted(response.data, key=lambda d: d.index)]
        if len(vectors) != len(cleaned) or not all(vectors):
            raise LLMError("Invalid embedding response received")
        logger.debug("Embedded %d texts (dimension %d)", len(vectors), len(vectors[0]))
        return vectors

    def embed_one(self, text: str) -> list[float]:
        return self.embed([text])[0]
