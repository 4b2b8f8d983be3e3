"""Document records: upload, listing, updates, deletion and recovery."""

import io
import time
from datetime import timedelta

from PIL import Image, UnidentifiedImageError
from sqlalchemy import delete, select

from docscan.auth.profiles import ProfileService
from docscan.errors import DocumentNotFoundError, StorageError, UploadValidationError
from docscan.storage.database import Database
from docscan.storage.file_storage import StorageClient
from docscan.storage.models import (
    Document,
    DocumentAccessLog,
    DocumentEmbedding,
    OCRStatus,
    utcnow,
)
from docscan.utils.config import UploadConfig
from docscan.utils.logger import get_logger

logger = get_logger(__name__)

_UPDATABLE_FIELDS = (
    "title",
    "document_type",
    "ocr_status",
    "ocr_confidence_score",
    "extracted_data",
    "processed_text",
    "processed_at",
    "last_accessed_at",
)

STALE_NOTICE = "Processing did not finish. Please retry."


def sniff_mime_type(content: bytes) -> str | None:
    """Detect a supported MIME type from the file's leading bytes."""
    if content.startswith(b"%PDF"):
        return "application/pdf"
    try:
        with Image.open(io.BytesIO(content)) as image:
            return Image.MIME.get(image.format or "")
    except (UnidentifiedImageError, OSError):
        return None


def _extension(filename: str, mime_type: str) -> str:
    if "." in filename:
        return filename.rsplit(".", 1)[1].lower()
    return mime_type.split("/")[-1]


class DocumentService:
    """Reads and writes ``documents`` rows and their stored files.

    Args:
        db: Database session factory.
        storage: Object storage client.
        profiles: Profile service for ownership and statistics.
        config: Upload limits.
    """

    def __init__(
        self,
        db: Database,
        storage: StorageClient,
        profiles: ProfileService,
        config: UploadConfig,
    ) -> None:
        self.db = db
        self.storage = storage
        self.profiles = profiles
        self.config = config

    def list_documents(self, user_id: str) -> list[Document]:
        """Return the user's documents, newest upload first."""
        with self.db.session() as session:
            rows = session.scalars(
                select(Document)
                .where(Document.user_id == user_id)
                .order_by(Document.uploaded_at.desc(), Document.created_at.desc())
            )
            return list(rows)

    def get_document(self, document_id: str) -> Document:
        """Fetch a document by id.

        Raises:
            DocumentNotFoundError: If no such document exists.
        """
        with self.db.session() as session:
            document = session.get(Document, document_id)
            if document is None:
                raise DocumentNotFoundError(f"Document {document_id} not found")
            return document

    def create_document(self, **fields: object) -> Document:
        with self.db.session() as session:
            document = Document(**fields)
            session.add(document)
        return document

    def update_document(self, document_id: str, **fields: object) -> Document:
        """Update known document fields; other keys are ignored."""
        with self.db.session() as session:
            document = session.get(Document, document_id)
            if document is None:
                raise DocumentNotFoundError(f"Document {document_id} not found")
            for key, value in fields.items():
                if key in _UPDATABLE_FIELDS:
                    setattr(document, key, value)
            return document

    def validate_upload(self, content: bytes, content_type: str | None) -> str:
        """Check size and type of an upload and return its MIME type.

        Raises:
            UploadValidationError: If the file is empty, too large or of an
                unsupported type.
        """
        if not content:
            raise UploadValidationError("Invalid file: File is empty or corrupted")
        if len(content) > self.config.max_file_size_bytes:
            limit_mb = self.config.max_file_size_bytes // (1024 * 1024)
            raise UploadValidationError(f"File is too large (maximum {limit_mb} MB)")

        mime_type = content_type
        if not mime_type or mime_type == "application/octet-stream":
            mime_type = sniff_mime_type(content)
        if mime_type not in self.config.supported_formats:
            raise UploadValidationError(
                f"Unsupported file type: {mime_type or 'unknown'}"
            )
        return mime_type

    def upload_document(
        self,
        user_id: str,
        email: str,
        filename: str,
        content: bytes,
        content_type: str | None = None,
        document_type: str | None = None,
        access_token: str | None = None,
    ) -> Document:
        """Store a file and create its ``pending`` document row.

        The stored object is removed again if the row cannot be written.

        Args:
            user_id: Owner of the document.
            email: Owner's email, used to create the profile on first upload.
            filename: Original file name.
            content: File bytes.
            content_type: Declared MIME type; sniffed when missing.
            document_type: Optional type hint for processing.
            access_token: Uploader's access token, so storage applies the
                owner's bucket policy.

        Returns:
            The new document row.
        """
        if not user_id:
            raise UploadValidationError("User ID is required for document upload")
        mime_type = self.validate_upload(content, content_type)
        self.profiles.get_or_create_profile(user_id, email)

        extension = _extension(filename, mime_type)
        storage_path = f"{user_id}/{int(time.time() * 1000)}.{extension}"
        self.storage.upload(
            storage_path, content, mime_type, access_token=access_token
        )

        try:
            document = self.create_document(
                user_id=user_id,
                filename=filename,
                original_filename=filename,
                file_type=extension,
                mime_type=mime_type,
                file_size_bytes=len(content),
                storage_path=storage_path,
                document_type=document_type,
                ocr_status=OCRStatus.PENDING,
                uploaded_at=utcnow(),
            )
        except Exception:
            logger.error("Failed to create record for %s, removing file", storage_path)
            try:
                self.storage.remove([storage_path], access_token=access_token)
            except StorageError as exc:
                logger.warning("Cleanup of %s failed: %s", storage_path, exc)
            raise

        self.profiles.record_upload(user_id, len(content))
        logger.info(
            "Uploaded %s for user %s as document %s", filename, user_id, document.id
        )
        return document

    def delete_document(self, document_id: str) -> None:
        """Delete a document, its embeddings and its stored file."""
        document = self.get_document(document_id)
        with self.db.session() as session:
            session.execute(
                delete(DocumentEmbedding).where(
                    DocumentEmbedding.document_id == document_id
                )
            )
            session.execute(
                delete(DocumentAccessLog).where(
                    DocumentAccessLog.document_id == document_id
                )
            )
            session.execute(delete(Document).where(Document.id == document_id))

        try:
            self.storage.remove([document.storage_path])
        except StorageError as exc:
            logger.warning("Could not remove stored file for %s: %s", document_id, exc)

        self.profiles.record_deletion(document.user_id, document.file_size_bytes or 0)
        logger.info("Deleted document %s", document_id)

    def retry_processing(self, document_id: str) -> Document:
        """Reset a document to ``pending`` so it can be processed again."""
        with self.db.session() as session:
            document = session.get(Document, document_id)
            if document is None:
                raise DocumentNotFoundError(f"Document {document_id} not found")
            document.ocr_status = OCRStatus.PENDING
            document.processed_at = None
        logger.info("Document %s queued for reprocessing", document_id)
        return document

    def recover_stale(self, older_than_minutes: int = 30) -> list[str]:
        """Mark documents stuck mid-processing as ``failed``.

        Returns:
            Ids of the recovered documents.
        """
        cutoff = utcnow() - timedelta(minutes=older_than_minutes)
        with self.db.session() as session:
            stale = list(
                session.scalars(
                    select(Document).where(
                        Document.ocr_status.in_(OCRStatus.IN_FLIGHT),
                        Document.updated_at < cutoff,
                    )
                )
            )
            for document in stale:
                document.ocr_status = OCRStatus.FAILED
                document.processed_at = utcnow()
                document.processed_text = STALE_NOTICE
            recovered = [document.id for document in stale]

        if recovered:
            logger.warning("Recovered %d stale documents", len(recovered))
        return recovered

    def mark_accessed(
        self,
        document_id: str,
        user_id: str,
        access_type: str = "view",
        query: str | None = None,
    ) -> None:
        with self.db.session() as session:
            document = session.get(Document, document_id)
            if document is None:
                raise DocumentNotFoundError(f"Document {document_id} not found")
            document.last_accessed_at = utcnow()
            session.add(
                DocumentAccessLog(
                    user_id=user_id,
                    document_id=document_id,
                    access_type=access_type,
                    query_used=query,
                )
            )
