"""FastAPI application for the document scanning service.

Provides REST endpoints for authentication, document upload and
management, semantic search and document-grounded conversations.
Uploaded documents are processed in the background after the
response is sent.
"""

import shutil
from functools import lru_cache
from typing import Annotated

from fastapi import (
    BackgroundTasks,
    FastAPI,
    File,
    Form,
    Header,
    HTTPException,
    UploadFile,
)
from fastapi.middleware.cors import CORSMiddleware

from docscan.auth.session import AuthSession, AuthUser
from docscan.errors import (
    AuthError,
    ConversationNotFoundError,
    DocScanError,
    DocumentNotFoundError,
    OCRError,
    ProfileConflictError,
    StorageError,
    UploadValidationError,
)
from docscan.services import Services, build_services
from docscan.storage.models import Document
from docscan.utils.config import load_config
from docscan.utils.logger import get_logger

from .schemas import (
    ChunkResponse,
    ConversationCreateRequest,
    ConversationResponse,
    DocumentListResponse,
    DocumentResponse,
    HealthResponse,
    LoginRequest,
    MessageExchangeResponse,
    MessageRequest,
    MessageResponse,
    ProfileResponse,
    ProfileUpdateRequest,
    RefreshRequest,
    ResetPasswordRequest,
    SearchRequest,
    SearchResponseModel,
    SessionResponse,
    SignUpRequest,
    SignUpResponse,
    StatsResponse,
)

logger = get_logger(__name__)

VERSION = "1.0.0"

app = FastAPI(
    title="Document Scanner API",
    description="Scan documents, extract their text and chat with them",
    version=VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_STATUS_CODES: list[tuple[type[DocScanError], int]] = [
    (AuthError, 401),
    (DocumentNotFoundError, 404),
    (ConversationNotFoundError, 404),
    (ProfileConflictError, 409),
    (UploadValidationError, 400),
    (OCRError, 502),
    (StorageError, 502),
]


@lru_cache(maxsize=1)
def _get_services() -> Services:
    """Build the shared services once per process."""
    return build_services(load_config())


def _http_error(exc: DocScanError) -> HTTPException:
    """Map a service error to an HTTP error response."""
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    logger.error("Unhandled service error: %s", exc)
    return HTTPException(status_code=500, detail=str(exc))


def _bearer_token(authorization: str | None) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return authorization.split(" ", 1)[1].strip()


def _authenticate(authorization: str | None) -> AuthUser:
    """Resolve the user behind the request's bearer token."""
    token = _bearer_token(authorization)
    try:
        return _get_services().auth.get_user(token)
    except AuthError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


def _owned_document(services: Services, document_id: str, user: AuthUser) -> Document:
    try:
        document = services.documents.get_document(document_id)
    except DocumentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if document.user_id != user.id:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


def _owned_conversation(services: Services, conversation_id: str, user: AuthUser):
    try:
        conversation = services.conversations.get_conversation(conversation_id)
    except ConversationNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if conversation.user_id != user.id:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


def _session_response(session: AuthSession) -> SessionResponse:
    return SessionResponse(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        expires_at=session.expires_at,
        user_id=session.user_id,
        email=session.email,
    )


AuthHeader = Annotated[str | None, Header()]


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Return system health status."""
    config = load_config()
    return HealthResponse(
        status="healthy",
        version=VERSION,
        tesseract_available=shutil.which("tesseract") is not None,
        ocr_configured=bool(config.ocr.api_key),
        llm_configured=bool(config.llm.api_key),
    )


@app.post("/auth/signup", response_model=SignUpResponse, status_code=201)
def sign_up(request: SignUpRequest) -> SignUpResponse:
    """Register a user and create their profile once a session exists."""
    services = _get_services()
    try:
        session = services.auth.sign_up(
            request.email, request.password, request.full_name
        )
        if session is None:
            return SignUpResponse(confirmation_required=True)
        services.profiles.get_or_create_profile(
            session.user_id, session.email or request.email, request.full_name
        )
    except DocScanError as exc:
        raise _http_error(exc) from exc
    return SignUpResponse(
        confirmation_required=False, session=_session_response(session)
    )


@app.post("/auth/login", response_model=SessionResponse)
def login(request: LoginRequest) -> SessionResponse:
    services = _get_services()
    try:
        session = services.auth.sign_in(request.email, request.password)
        full_name = session.user_metadata.get("full_name")
        services.profiles.get_or_create_profile(
            session.user_id, session.email or request.email, full_name
        )
    except DocScanError as exc:
        raise _http_error(exc) from exc
    return _session_response(session)


@app.post("/auth/refresh", response_model=SessionResponse)
def refresh(request: RefreshRequest) -> SessionResponse:
    try:
        session = _get_services().auth.refresh(request.refresh_token)
    except DocScanError as exc:
        raise _http_error(exc) from exc
    return _session_response(session)


@app.post("/auth/logout", status_code=204)
def logout(authorization: AuthHeader = None) -> None:
    token = _bearer_token(authorization)
    try:
        _get_services().auth.sign_out(token)
    except DocScanError as exc:
        raise _http_error(exc) from exc


@app.post("/auth/reset-password", status_code=202)
def reset_password(request: ResetPasswordRequest) -> dict[str, str]:
    try:
        _get_services().auth.reset_password(request.email)
    except DocScanError as exc:
        raise _http_error(exc) from exc
    return {"status": "sent"}


@app.get("/auth/me", response_model=ProfileResponse)
def get_me(authorization: AuthHeader = None) -> ProfileResponse:
    """Return the signed-in user's profile, creating it on first access."""
    user = _authenticate(authorization)
    try:
        profile = _get_services().profiles.get_or_create_profile(
            user.id, user.email, user.user_metadata.get("full_name")
        )
    except DocScanError as exc:
        raise _http_error(exc) from exc
    return ProfileResponse.model_validate(profile)


@app.patch("/auth/me", response_model=ProfileResponse)
def update_me(
    request: ProfileUpdateRequest, authorization: AuthHeader = None
) -> ProfileResponse:
    user = _authenticate(authorization)
    profile = _get_services().profiles.update_profile(
        user.id, **request.model_dump(exclude_none=True)
    )
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return ProfileResponse.model_validate(profile)


@app.get("/documents", response_model=DocumentListResponse)
def list_documents(authorization: AuthHeader = None) -> DocumentListResponse:
    user = _authenticate(authorization)
    documents = _get_services().documents.list_documents(user.id)
    return DocumentListResponse(
        documents=[DocumentResponse.model_validate(d) for d in documents],
        total=len(documents),
    )


@app.post("/documents", response_model=DocumentResponse, status_code=201)
async def upload_document(
    background_tasks: BackgroundTasks,
    file: Annotated[UploadFile, File(...)],
    document_type: Annotated[str | None, Form()] = None,
    authorization: AuthHeader = None,
) -> DocumentResponse:
    """Upload a document and queue it for processing.

    Args:
        background_tasks: Runs the processing pipeline after the response.
        file: Uploaded document file (image or PDF).
        document_type: Optional type hint used during refinement.
        authorization: Bearer access token.

    Returns:
        The new document in ``pending`` status.
    """
    user = _authenticate(authorization)
    services = _get_services()
    content = await file.read()
    try:
        document = services.documents.upload_document(
            user_id=user.id,
            email=user.email,
            filename=file.filename or "document",
            content=content,
            content_type=file.content_type,
            document_type=document_type,
            access_token=_bearer_token(authorization),
        )
    except DocScanError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:
        logger.exception("Upload failed for %s", file.filename)
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    background_tasks.add_task(services.pipeline.process, document.id)
    return DocumentResponse.model_validate(document)


@app.get("/documents/stats", response_model=StatsResponse)
def document_stats(authorization: AuthHeader = None) -> StatsResponse:
    user = _authenticate(authorization)
    stats = _get_services().profiles.get_stats(user.id)
    if stats is None:
        return StatsResponse(
            total_documents=0, processed_documents=0, storage_used_mb=0.0
        )
    return StatsResponse(
        total_documents=stats.total_documents,
        processed_documents=stats.processed_documents,
        storage_used_mb=stats.storage_used_mb,
    )


@app.get("/documents/{document_id}", response_model=DocumentResponse)
def get_document(document_id: str, authorization: AuthHeader = None) -> DocumentResponse:
    user = _authenticate(authorization)
    services = _get_services()
    document = _owned_document(services, document_id, user)
    services.documents.mark_accessed(document_id, user.id, "view")
    return DocumentResponse.model_validate(document)


@app.delete("/documents/{document_id}", status_code=204)
def delete_document(document_id: str, authorization: AuthHeader = None) -> None:
    user = _authenticate(authorization)
    services = _get_services()
    _owned_document(services, document_id, user)
    try:
        services.documents.delete_document(document_id)
    except DocScanError as exc:
        raise _http_error(exc) from exc


@app.post("/documents/{document_id}/retry", response_model=DocumentResponse)
def retry_document(
    document_id: str,
    background_tasks: BackgroundTasks,
    authorization: AuthHeader = None,
) -> DocumentResponse:
    """Reset a document to ``pending`` and process it again."""
    user = _authenticate(authorization)
    services = _get_services()
    _owned_document(services, document_id, user)
    document = services.documents.retry_processing(document_id)
    background_tasks.add_task(services.pipeline.process, document_id)
    return DocumentResponse.model_validate(document)


@app.post("/search", response_model=SearchResponseModel)
def search_documents(
    request: SearchRequest, authorization: AuthHeader = None
) -> SearchResponseModel:
    """Semantic search over the signed-in user's processed documents."""
    user = _authenticate(authorization)
    try:
        results = _get_services().search.search(
            request.query,
            user.id,
            limit=request.limit,
            document_type=request.document_type,
            min_threshold=request.min_threshold,
        )
    except DocScanError as exc:
        raise _http_error(exc) from exc
    return SearchResponseModel(
        documents=[DocumentResponse.model_validate(d) for d in results.documents],
        chunks=[
            ChunkResponse(
                document_id=m.document_id,
                content=m.content,
                chunk_index=m.chunk_index,
                importance=m.importance,
                similarity=m.similarity,
                weighted_score=m.weighted_score,
            )
            for m in results.chunks
        ],
        similarities=results.similarities,
    )


@app.get("/conversations", response_model=list[ConversationResponse])
def list_conversations(authorization: AuthHeader = None) -> list[ConversationResponse]:
    user = _authenticate(authorization)
    conversations = _get_services().conversations.list_conversations(user.id)
    return [ConversationResponse.model_validate(c) for c in conversations]


@app.post("/conversations", response_model=ConversationResponse, status_code=201)
def create_conversation(
    request: ConversationCreateRequest, authorization: AuthHeader = None
) -> ConversationResponse:
    user = _authenticate(authorization)
    conversation = _get_services().conversations.create_conversation(
        user.id, request.title
    )
    return ConversationResponse.model_validate(conversation)


@app.delete("/conversations/{conversation_id}", status_code=204)
def delete_conversation(conversation_id: str, authorization: AuthHeader = None) -> None:
    user = _authenticate(authorization)
    services = _get_services()
    _owned_conversation(services, conversation_id, user)
    services.conversations.delete_conversation(conversation_id)


@app.get(
    "/conversations/{conversation_id}/messages",
    response_model=list[MessageResponse],
)
def list_messages(
    conversation_id: str, authorization: AuthHeader = None
) -> list[MessageResponse]:
    user = _authenticate(authorization)
    services = _get_services()
    _owned_conversation(services, conversation_id, user)
    messages = services.conversations.list_messages(conversation_id)
    return [MessageResponse.model_validate(m) for m in messages]


@app.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageExchangeResponse,
)
def send_message(
    conversation_id: str,
    request: MessageRequest,
    authorization: AuthHeader = None,
) -> MessageExchangeResponse:
    """Store a question and return it with the assistant's answer."""
    user = _authenticate(authorization)
    services = _get_services()
    _owned_conversation(services, conversation_id, user)
    try:
        user_message, assistant_message = services.conversations.send_message(
            conversation_id, user.id, request.content
        )
    except DocScanError as exc:
        raise _http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return MessageExchangeResponse(
        user_message=MessageResponse.model_validate(user_message),
        assistant_message=MessageResponse.model_validate(assistant_message),
    )
