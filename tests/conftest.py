"""Shared test fixtures for the document scanning test suite."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from docscan.auth.profiles import ProfileService
from docscan.storage.database import Database, create_db_engine, init_db
from docscan.storage.models import Document, DocumentEmbedding, OCRStatus, utcnow
from docscan.utils.config import AppConfig, DatabaseConfig


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def config_dir(project_root: Path) -> Path:
    """Return the configs directory path."""
    return project_root / "configs"


@pytest.fixture
def app_config() -> AppConfig:
    """Configuration pointing at fake endpoints with fake keys."""
    return AppConfig(
        supabase={"url": "https://project.supabase.test", "anon_key": "anon-key"},
        database={"url": "sqlite://"},
        ocr={"api_key": "eden-key", "poll_interval_seconds": 0},
        llm={"api_key": "openai-key"},
        chunking={"batch_delay_seconds": 0},
    )


@pytest.fixture
def db() -> Database:
    """Fresh in-memory SQLite database with all tables."""
    engine = create_db_engine(DatabaseConfig(url="sqlite://"))
    init_db(engine)
    database = Database(engine)
    yield database
    engine.dispose()


@pytest.fixture
def profiles(db: Database) -> ProfileService:
    return ProfileService(db)


@pytest.fixture
def user(profiles: ProfileService):
    """A stored user profile."""
    return profiles.create_profile("user-1", "alice@example.com", "Alice")


@pytest.fixture
def make_document(db: Database):
    """Factory inserting a document row for ``user-1``."""

    def _make(**fields) -> Document:
        values = {
            "user_id": "user-1",
            "filename": "scan.png",
            "original_filename": "scan.png",
            "file_type": "png",
            "mime_type": "image/png",
            "file_size_bytes": 1024,
            "storage_path": "user-1/1700000000000.png",
            "ocr_status": OCRStatus.PENDING,
            "uploaded_at": utcnow(),
        }
        values.update(fields)
        with db.session() as session:
            document = Document(**values)
            session.add(document)
        return document

    return _make


@pytest.fixture
def add_embedding(db: Database):
    """Factory inserting a chunk embedding for a document."""

    def _add(
        document_id: str,
        vector: list[float],
        index: int = 0,
        content: str = "chunk text",
        importance: str = "medium",
        document_type: str = "unknown",
    ) -> None:
        with db.session() as session:
            session.add(
                DocumentEmbedding(
                    document_id=document_id,
                    content_chunk=content,
                    chunk_index=index,
                    chunk_metadata={
                        "importance": importance,
                        "document_type": document_type,
                    },
                    tokens_count=len(content) // 4,
                    embedding=vector,
                )
            )

    return _add


@pytest.fixture
def mock_embedder() -> MagicMock:
    """Embedding client returning a fixed query vector."""
    embedder = MagicMock()
    embedder.embed_one.return_value = [1.0, 0.0, 0.0]
    return embedder
