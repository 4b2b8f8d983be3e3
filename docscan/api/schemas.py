"""Pydantic request/response schemas for the FastAPI endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Response schema for the health check endpoint."""

    status: str
    version: str
    tesseract_available: bool
    ocr_configured: bool
    llm_configured: bool


class SignUpRequest(BaseModel):
    email: str
    password: str = Field(min_length=6)
    full_name: str | None = None


class LoginRequest(BaseModel):
    email: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class ResetPasswordRequest(BaseModel):
    email: str


class SessionResponse(BaseModel):
    """Tokens returned after sign-in, sign-up or refresh."""

    access_token: str
    refresh_token: str
    expires_at: float
    user_id: str
    email: str


class SignUpResponse(BaseModel):
    """Sign-up outcome; no session until the email is confirmed."""

    confirmation_required: bool
    session: SessionResponse | None = None


class ProfileResponse(BaseModel):
    """Response schema for a user profile."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    full_name: str
    subscription_tier: str | None = None
    document_count: int = 0
    storage_used_mb: float = 0.0
    timezone: str | None = None


class ProfileUpdateRequest(BaseModel):
    full_name: str | None = None
    timezone: str | None = None


class DocumentResponse(BaseModel):
    """Response schema for a stored document."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    filename: str
    original_filename: str
    file_type: str
    mime_type: str
    file_size_bytes: int
    title: str | None = None
    document_type: str | None = None
    ocr_status: str
    ocr_confidence_score: float | None = None
    extracted_data: dict[str, Any] | None = None
    processed_text: str | None = None
    uploaded_at: datetime | None = None
    processed_at: datetime | None = None


class DocumentListResponse(BaseModel):
    documents: list[DocumentResponse]
    total: int


class StatsResponse(BaseModel):
    """Document totals for the signed-in user."""

    total_documents: int
    processed_documents: int
    storage_used_mb: float


class SearchRequest(BaseModel):
    query: str
    limit: int = Field(default=10, ge=1, le=50)
    document_type: str | None = None
    min_threshold: float | None = Field(default=None, ge=0.0, le=1.0)


class ChunkResponse(BaseModel):
    """A retrieved chunk and its scores."""

    document_id: str
    content: str
    chunk_index: int
    importance: str
    similarity: float
    weighted_score: float


class SearchResponseModel(BaseModel):
    """Response schema for semantic search."""

    documents: list[DocumentResponse]
    chunks: list[ChunkResponse]
    similarities: list[float]


class ConversationCreateRequest(BaseModel):
    title: str | None = None


class ConversationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str | None = None
    message_count: int = 0
    last_message_at: datetime | None = None
    created_at: datetime | None = None


class MessageRequest(BaseModel):
    content: str = Field(min_length=1)


class MessageResponse(BaseModel):
    """Response schema for a conversation message."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    role: str
    content: str
    model_used: str | None = None
    processing_time_ms: int | None = None
    referenced_documents: list[str] | None = None
    similarity_scores: list[float] | None = None
    created_at: datetime | None = None


class MessageExchangeResponse(BaseModel):
    user_message: MessageResponse
    assistant_message: MessageResponse
