"""Writes chunk embeddings for a document into ``document_embeddings``."""

import time
from collections.abc import Callable
from typing import Any

from sqlalchemy import delete

from docscan.errors import LLMError
from docscan.storage.database import Database
from docscan.storage.models import Document, DocumentEmbedding
from docscan.utils.config import ChunkingConfig
from docscan.utils.logger import get_logger, log_processing_step

from .chunking import Chunk, build_chunks
from .embeddings import EmbeddingClient

logger = get_logger(__name__)


class DocumentIndexer:
    """Chunks, embeds and stores a document's text.

    Args:
        db: Database session factory.
        embedder: Embedding client.
        config: Chunk size, overlap and batching.
        sleep: Function used to pause between batches.
    """

    def __init__(
        self,
        db: Database,
        embedder: EmbeddingClient,
        config: ChunkingConfig,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.db = db
        self.embedder = embedder
        self.config = config
        self.sleep = sleep

    def _batches(self, chunks: list[Chunk]) -> list[list[Chunk]]:
        size = max(1, self.config.batch_size)
        return [chunks[i : i + size] for i in range(0, len(chunks), size)]

    def index(
        self,
        document_id: str,
        text: str,
        structured_data: dict[str, Any] | None = None,
    ) -> int:
        """Replace the document's embeddings.

        Existing rows are deleted first. A batch whose embedding request
        fails is logged and skipped.

        Returns:
            Number of chunks stored.

        Raises:
            ValueError: If ``text`` is blank.
        """
        if not text or not text.strip():
            raise ValueError("No text provided for embeddings")

        with self.db.session() as session:
            session.execute(
                delete(DocumentEmbedding).where(
                    DocumentEmbedding.document_id == document_id
                )
            )
            document = session.get(Document, document_id)
            document_type = (document.document_type if document else None) or "unknown"
            title = (document.title if document else None) or ""

        chunks = build_chunks(
            text,
            structured_data,
            max_tokens=self.config.max_tokens,
            overlap=self.config.overlap_tokens,
        )
        log_processing_step(
            logger, document_id, "EMBEDDINGS", "Creating embeddings", chunks=len(chunks)
        )

        batches = self._batches(chunks)
        stored = 0
        for batch_number, batch in enumerate(batches):
            try:
                vectors = self.embedder.embed([chunk.text for chunk in batch])
            except (LLMError, ValueError) as exc:
                logger.error(
                    "Embedding batch %d of document %s failed: %s",
                    batch_number + 1,
                    document_id,
                    exc,
                )
                continue

            with self.db.session() as session:
                for chunk, vector in zip(batch, vectors):
                    session.add(
                        DocumentEmbedding(
                            document_id=document_id,
                            content_chunk=chunk.text,
                            chunk_index=chunk.index,
                            chunk_type="text",
                            chunk_metadata={
                                "importance": chunk.importance,
                                "document_type": document_type,
                                "title": title,
                                "chunk_index": chunk.index,
                                "total_chunks": len(chunks),
                            },
                            tokens_count=chunk.tokens_count,
                            embedding=list(vector),
                        )
                    )
            stored += len(batch)

            if batch_number < len(batches) - 1:
                self.sleep(self.config.batch_delay_seconds)

        log_processing_step(
            logger,
            document_id,
            "EMBEDDINGS COMPLETE",
            "Stored embeddings",
            total_chunks=len(chunks),
            stored=stored,
        )
        return stored
