"""Document processing pipeline.

Takes an uploaded document from ``pending`` to one of the terminal
statuses::

    pending -> processing -> extracted -> completed | fallback | partial
                    \\-------------\\---------> failed

``completed``: OCR text was refined, classified and embedded.
``partial``: refined and classified, but no embeddings could be stored.
``fallback``: refinement failed; the raw OCR text was embedded instead.
``failed``: OCR or storage failed, or an unexpected error occurred.
"""

import json
from dataclasses import dataclass

from docscan.errors import DocumentNotFoundError, OCRError
from docscan.ocr.eden_client import PDF_MIME_TYPE, OCRService
from docscan.storage.database import Database
from docscan.storage.file_storage import StorageClient
from docscan.storage.models import Document, OCRStatus, utcnow
from docscan.utils.logger import get_logger, log_processing_step

from .indexer import DocumentIndexer
from .llm import DocumentClassifier, TextRefiner

logger = get_logger(__name__)

FAILURE_NOTICE = "Error during document processing. Please try again."


@dataclass
class ProcessingOutcome:
    """Final state of one pipeline run."""

    document_id: str
    status: str
    embeddings: int = 0
    error: str | None = None


class DocumentPipeline:
    """Runs OCR, refinement, classification and indexing for a document.

    Args:
        db: Database session factory.
        storage: Object storage client holding the uploaded files.
        ocr: OCR service with provider fallback.
        refiner: Chat-model text refiner.
        classifier: Chat-model document classifier.
        indexer: Embedding writer.
    """

    def __init__(
        self,
        db: Database,
        storage: StorageClient,
        ocr: OCRService,
        refiner: TextRefiner,
        classifier: DocumentClassifier,
        indexer: DocumentIndexer,
    ) -> None:
        self.db = db
        self.storage = storage
        self.ocr = ocr
        self.refiner = refiner
        self.classifier = classifier
        self.indexer = indexer

    def _update(self, document_id: str, **fields: object) -> None:
        with self.db.session() as session:
            document = session.get(Document, document_id)
            if document is None:
                raise DocumentNotFoundError(document_id)
            for key, value in fields.items():
                setattr(document, key, value)

    def _load(self, document_id: str) -> Document:
        with self.db.session() as session:
            document = session.get(Document, document_id)
            if document is None:
                raise DocumentNotFoundError(document_id)
            return document

    def process(self, document_id: str) -> ProcessingOutcome:
        """Process a document end to end; never raises.

        Failures are recorded on the document row and in the log.
        """
        try:
            return self._run(document_id)
        except DocumentNotFoundError:
            logger.error("Document %s not found for processing", document_id)
            return ProcessingOutcome(
                document_id, OCRStatus.FAILED, error="Document not found"
            )
        except Exception as exc:
            log_processing_step(
                logger,
                document_id,
                "PROCESSING ERROR",
                "Document processing failed",
                error=str(exc),
            )
            try:
                self._update(
                    document_id,
                    ocr_status=OCRStatus.FAILED,
                    processed_at=utcnow(),
                    processed_text=FAILURE_NOTICE,
                )
            except Exception:
                logger.exception("Could not record failure for %s", document_id)
            return ProcessingOutcome(document_id, OCRStatus.FAILED, error=str(exc))

    def _run(self, document_id: str) -> ProcessingOutcome:
        document = self._load(document_id)
        self._update(document_id, ocr_status=OCRStatus.PROCESSING)
        log_processing_step(
            logger,
            document_id,
            "TEXT EXTRACTION",
            "Starting text extraction",
            storage_path=document.storage_path,
            mime_type=document.mime_type,
        )

        content = self.storage.download(document.storage_path)
        if not content:
            raise OCRError("Downloaded file is empty")

        file_url = None
        if document.mime_type == PDF_MIME_TYPE:
            file_url = self.storage.create_signed_url(document.storage_path)

        ocr_result = self.ocr.extract(
            content, document.original_filename, document.mime_type, file_url
        )
        self._update(
            document_id,
            ocr_status=OCRStatus.EXTRACTED,
            ocr_confidence_score=ocr_result.confidence,
            extracted_data={
                "provider": ocr_result.provider,
                "entities": ocr_result.entities,
                "text_length": len(ocr_result.text),
            },
        )
        log_processing_step(
            logger,
            document_id,
            "TEXT STORAGE",
            "OCR text extracted",
            provider=ocr_result.provider,
            text_length=len(ocr_result.text),
            confidence=ocr_result.confidence,
        )

        refined = self.refiner.refine(
            ocr_result.text, document_id, document.document_type
        )
        if not refined.success or not refined.processed_text:
            log_processing_step(
                logger,
                document_id,
                "PROCESSING FALLBACK",
                "Refinement failed, indexing raw OCR text",
                reason=refined.error or refined.reason or "Unknown error",
            )
            self._update(
                document_id, ocr_status=OCRStatus.FALLBACK, processed_at=utcnow()
            )
            try:
                stored = self.indexer.index(document_id, ocr_result.text)
            except Exception as exc:
                logger.error("Embedding failed for document %s: %s", document_id, exc)
                stored = 0
            return ProcessingOutcome(document_id, OCRStatus.FALLBACK, stored)

        classification = self.classifier.classify(refined.processed_text, document_id)
        updates: dict[str, object] = {
            "ocr_status": OCRStatus.COMPLETED,
            "processed_at": utcnow(),
        }
        structured = None
        if classification.success:
            structured = classification.structured_data
            updates["document_type"] = classification.document_type
            updates["processed_text"] = json.dumps(structured)
            title = structured.get("title") or structured.get("name")
            if title:
                updates["title"] = str(title)
        else:
            updates["processed_text"] = refined.processed_text
        self._update(document_id, **updates)

        try:
            stored = self.indexer.index(document_id, refined.processed_text, structured)
        except Exception as exc:
            logger.error("Embedding failed for document %s: %s", document_id, exc)
            stored = 0

        if stored == 0:
            self._update(document_id, ocr_status=OCRStatus.PARTIAL)
            log_processing_step(
                logger, document_id, "PROCESS PARTIAL", "No embeddings stored"
            )
            return ProcessingOutcome(document_id, OCRStatus.PARTIAL, 0)

        log_processing_step(
            logger,
            document_id,
            "PROCESS COMPLETE",
            "Document processing completed",
            embeddings=stored,
        )
        return ProcessingOutcome(document_id, OCRStatus.COMPLETED, stored)
