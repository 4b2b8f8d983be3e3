"""Exception hierarchy shared by the service layers and the API."""


class DocScanError(Exception):
    """Base class for all errors raised by docscan."""


class ConfigError(DocScanError):
    """A required setting is missing or invalid."""


class AuthError(DocScanError):
    """Authentication failed or the session could not be refreshed."""


class ProfileConflictError(DocScanError):
    """The email is already registered to a different user id."""


class StorageError(DocScanError):
    """An object storage request failed."""


class OCRError(DocScanError):
    """No OCR provider produced text for a document."""


class OCRTimeoutError(OCRError):
    """An asynchronous OCR job did not finish within the polling budget."""


class DocumentNotFoundError(DocScanError):
    """The requested document does not exist."""


class UploadValidationError(DocScanError):
    """An uploaded file was rejected before storage."""


class LLMError(DocScanError):
    """A call to the embeddings or chat model failed."""


class ConversationNotFoundError(DocScanError):
    """The requested conversation does not exist or was deleted."""
