"""Wires configuration into the service objects used by the API and CLI."""

from dataclasses import dataclass

from docscan.auth.profiles import ProfileService
from docscan.auth.session import AuthClient
from docscan.conversations.service import ConversationService
from docscan.documents.search import SemanticSearch
from docscan.documents.service import DocumentService
from docscan.ocr.eden_client import OCRService
from docscan.processing.embeddings import EmbeddingClient
from docscan.processing.indexer import DocumentIndexer
from docscan.processing.llm import ChatModel, DocumentClassifier, TextRefiner
from docscan.processing.pipeline import DocumentPipeline
from docscan.storage.database import Database, create_db_engine, init_db
from docscan.storage.file_storage import StorageClient
from docscan.utils.config import AppConfig, log_config_status


@dataclass
class Services:
    """Shared service objects for one process."""

    config: AppConfig
    db: Database
    auth: AuthClient
    profiles: ProfileService
    storage: StorageClient
    documents: DocumentService
    pipeline: DocumentPipeline
    search: SemanticSearch
    conversations: ConversationService


def build_services(
    config: AppConfig, db: Database | None = None, create_tables: bool = True
) -> Services:
    """Create every service from ``config``.

    Args:
        config: Application configuration.
        db: Existing database to use instead of one built from config.
        create_tables: Whether to create missing tables on startup.

    Returns:
        The assembled services.
    """
    log_config_status(config)
    if db is None:
        engine = create_db_engine(config.database)
        if create_tables:
            init_db(engine)
        db = Database(engine)

    storage = StorageClient(config.supabase, config.storage)
    profiles = ProfileService(db)
    embedder = EmbeddingClient(config.llm)
    chat = ChatModel(config.llm)
    search = SemanticSearch(db, embedder, config.search)

    pipeline = DocumentPipeline(
        db=db,
        storage=storage,
        ocr=OCRService(config.ocr),
        refiner=TextRefiner(chat, config.llm),
        classifier=DocumentClassifier(chat, config.llm),
        indexer=DocumentIndexer(db, embedder, config.chunking),
    )

    return Services(
        config=config,
        db=db,
        auth=AuthClient(config.supabase),
        profiles=profiles,
        storage=storage,
        documents=DocumentService(db, storage, profiles, config.upload),
        pipeline=pipeline,
        search=search,
        conversations=ConversationService(db, search, chat),
    )
