"""ORM models for users, documents, embeddings, conversations and access logs."""

import uuid
from datetime import datetime, timezone

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB

from .database import Base

EMBEDDING_DIMENSIONS = 1536

# JSONB on Postgres, plain JSON elsewhere.
JSONType = JSON().with_variant(JSONB(), "postgresql")

# pgvector column on Postgres, JSON list of floats elsewhere.
VectorType = Vector(EMBEDDING_DIMENSIONS).with_variant(JSON(), "sqlite")


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OCRStatus:
    """Values of ``Document.ocr_status``."""

    PENDING = "pending"
    PROCESSING = "processing"
    EXTRACTED = "extracted"
    COMPLETED = "completed"
    FALLBACK = "fallback"
    PARTIAL = "partial"
    FAILED = "failed"

    PROCESSED = (COMPLETED, FALLBACK)
    SEARCHABLE = (COMPLETED, FALLBACK)
    IN_FLIGHT = (PROCESSING, EXTRACTED)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    email = Column(String(320), nullable=False, unique=True)
    full_name = Column(String(255), nullable=False, default="User")
    subscription_tier = Column(String(32), default="free")
    document_count = Column(Integer, default=0)
    storage_used_mb = Column(Float, default=0.0)
    timezone = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Document(Base):
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    filename = Column(String(512), nullable=False)
    original_filename = Column(String(512), nullable=False)
    file_type = Column(String(32), nullable=False)
    mime_type = Column(String(128), nullable=False)
    file_size_bytes = Column(Integer, nullable=False)
    storage_path = Column(String(1024), nullable=False)
    title = Column(String(512), nullable=True)
    document_type = Column(String(128), nullable=True)
    ocr_status = Column(String(32), default=OCRStatus.PENDING, index=True)
    ocr_confidence_score = Column(Float, nullable=True)
    extracted_data = Column(JSONType, nullable=True)
    processed_text = Column(Text, nullable=True)
    uploaded_at = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    last_accessed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class DocumentEmbedding(Base):
    __tablename__ = "document_embeddings"
    __table_args__ = (
        UniqueConstraint(
            "document_id",
            "chunk_index",
            name="document_embeddings_document_id_chunk_index_unique",
        ),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    document_id = Column(
        String(36), ForeignKey("documents.id", ondelete="CASCADE"), index=True
    )
    content_chunk = Column(Text, nullable=False)
    chunk_index = Column(Integer, nullable=False)
    chunk_type = Column(String(32), default="text")
    chunk_metadata = Column(JSONType, nullable=True)
    embedding = Column(VectorType, nullable=True)
    tokens_count = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class AIConversation(Base):
    __tablename__ = "ai_conversations"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    title = Column(String(512), nullable=True)
    system_prompt = Column(Text, nullable=True)
    message_count = Column(Integer, default=0)
    context_window_size = Column(Integer, default=4)
    is_active = Column(Boolean, default=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class AIMessage(Base):
    __tablename__ = "ai_messages"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"))
    conversation_id = Column(
        String(36),
        ForeignKey("ai_conversations.id", ondelete="CASCADE"),
        index=True,
    )
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)
    model_used = Column(String(128), nullable=True)
    input_tokens = Column(Integer, nullable=True)
    output_tokens = Column(Integer, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    referenced_documents = Column(JSONType, nullable=True)
    retrieved_chunks = Column(JSONType, nullable=True)
    similarity_scores = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class DocumentAccessLog(Base):
    __tablename__ = "document_access_logs"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"))
    document_id = Column(
        String(36), ForeignKey("documents.id", ondelete="CASCADE"), index=True
    )
    conversation_id = Column(
        String(36), ForeignKey("ai_conversations.id", ondelete="SET NULL")
    )
    message_id = Column(String(36), ForeignKey("ai_messages.id", ondelete="SET NULL"))
    access_type = Column(String(32), nullable=False)
    query_used = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
