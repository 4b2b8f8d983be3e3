"""Semantic search over a user's document chunks.

On Postgres the similarity query runs in the database with pgvector's
cosine distance operator. Other backends keep embeddings as JSON and
are scored in process with numpy.
"""

from dataclasses import dataclass, field
from typing import Any

import numpy as np
from sqlalchemy import select

from docscan.processing.embeddings import EmbeddingClient
from docscan.storage.database import Database
from docscan.storage.models import (
    Document,
    DocumentAccessLog,
    DocumentEmbedding,
    OCRStatus,
)
from docscan.utils.config import SearchConfig
from docscan.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ChunkMatch:
    """One retrieved chunk with its raw and importance-weighted scores."""

    document_id: str
    content: str
    chunk_index: int
    metadata: dict[str, Any]
    similarity: float
    weighted_score: float = 0.0

    @property
    def importance(self) -> str:
        return self.metadata.get("importance") or "medium"

    @property
    def document_type(self) -> str | None:
        return self.metadata.get("document_type")


@dataclass
class SearchResponse:
    """Documents, chunks and similarity scores for one query."""

    documents: list[Document] = field(default_factory=list)
    chunks: list[ChunkMatch] = field(default_factory=list)
    similarities: list[float] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.chunks


def _cosine(a: np.ndarray, b: np.ndarray) -> float:
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom == 0:
        return 0.0
    return float(np.dot(a, b) / denom)


class SemanticSearch:
    """Embeds a query and ranks the user's chunks against it.

    Args:
        db: Database session factory.
        embedder: Embedding client for the query.
        config: Thresholds, limits and importance weights.
    """

    def __init__(
        self, db: Database, embedder: EmbeddingClient, config: SearchConfig
    ) -> None:
        self.db = db
        self.embedder = embedder
        self.config = config

    def _candidates_pgvector(
        self, query_vector: list[float], user_id: str, threshold: float, limit: int
    ) -> list[ChunkMatch]:
        distance = DocumentEmbedding.embedding.cosine_distance(query_vector)
        similarity = (1 - distance).label("similarity")
        stmt = (
            select(DocumentEmbedding, similarity)
            .join(Document, Document.id == DocumentEmbedding.document_id)
            .where(
                Document.user_id == user_id,
                Document.ocr_status.in_(OCRStatus.SEARCHABLE),
                DocumentEmbedding.embedding.is_not(None),
                1 - distance > threshold,
            )
            .order_by(distance)
            .limit(limit)
        )
        with self.db.session() as session:
            return [
                ChunkMatch(
                    document_id=row.document_id,
                    content=row.content_chunk,
                    chunk_index=row.chunk_index,
                    metadata=dict(row.chunk_metadata or {}),
                    similarity=float(score),
                )
                for row, score in session.execute(stmt)
            ]

    def _candidates_numpy(
        self, query_vector: list[float], user_id: str, threshold: float, limit: int
    ) -> list[ChunkMatch]:
        stmt = (
            select(DocumentEmbedding)
            .join(Document, Document.id == DocumentEmbedding.document_id)
            .where(
                Document.user_id == user_id,
                Document.ocr_status.in_(OCRStatus.SEARCHABLE),
                DocumentEmbedding.embedding.is_not(None),
            )
        )
        q_vec = np.array(query_vector, dtype=float)
        scored: list[ChunkMatch] = []
        with self.db.session() as session:
            for row in session.scalars(stmt):
                score = _cosine(q_vec, np.array(row.embedding, dtype=float))
                if score > threshold:
                    scored.append(
                        ChunkMatch(
                            document_id=row.document_id,
                            content=row.content_chunk,
                            chunk_index=row.chunk_index,
                            metadata=dict(row.chunk_metadata or {}),
                            similarity=score,
                        )
                    )
        scored.sort(key=lambda m: m.similarity, reverse=True)
        return scored[:limit]

    def rank(self, matches: list[ChunkMatch], limit: int) -> list[ChunkMatch]:
        """Weight similarities by chunk importance and keep the best ``limit``."""
        weights = self.config.importance_weights
        for match in matches:
            match.weighted_score = match.similarity * weights.get(match.importance, 1.0)
        ranked = sorted(matches, key=lambda m: m.weighted_score, reverse=True)
        return ranked[:limit]

    def search(
        self,
        query: str,
        user_id: str,
        limit: int | None = None,
        document_type: str | None = None,
        min_threshold: float | None = None,
    ) -> SearchResponse:
        """Find the chunks most relevant to ``query``.

        Args:
            query: Natural-language query; blank queries return nothing.
            user_id: Only this user's documents are searched.
            limit: Maximum number of chunks returned.
            document_type: Preferred document type. Ignored when no
                candidate chunk has it.
            min_threshold: Minimum cosine similarity.

        Returns:
            Ranked chunks, their distinct documents and similarities.
        """
        if not query or not query.strip():
            return SearchResponse()

        limit = limit or self.config.default_limit
        threshold = (
            self.config.min_threshold if min_threshold is None else min_threshold
        )
        query_vector = self.embedder.embed_one(query)

        fetch = limit * self.config.candidate_multiplier
        if self.db.supports_vector_ops:
            candidates = self._candidates_pgvector(
                query_vector, user_id, threshold, fetch
            )
        else:
            candidates = self._candidates_numpy(query_vector, user_id, threshold, fetch)

        if document_type:
            filtered = [c for c in candidates if c.document_type == document_type]
            if filtered:
                candidates = filtered
            else:
                logger.info(
                    "No chunks of type %s matched, using unfiltered results",
                    document_type,
                )

        ranked = self.rank(candidates, limit)
        if not ranked:
            logger.info("No relevant chunks found for user %s", user_id)
            return SearchResponse()

        document_ids = list(dict.fromkeys(match.document_id for match in ranked))
        with self.db.session() as session:
            rows = {
                doc.id: doc
                for doc in session.scalars(
                    select(Document).where(Document.id.in_(document_ids))
                )
            }
            for document_id in document_ids:
                session.add(
                    DocumentAccessLog(
                        user_id=user_id,
                        document_id=document_id,
                        access_type="search",
                        query_used=query,
                    )
                )

        logger.info(
            "Search returned %d chunks from %d documents", len(ranked), len(rows)
        )
        return SearchResponse(
            documents=[rows[i] for i in document_ids if i in rows],
            chunks=ranked,
            similarities=[match.similarity for match in ranked],
        )
