"""Configuration management for the document scanning service.

Loads and validates YAML configuration with sensible defaults for the
hosted backend, OCR providers, language models, chunking and search.
Secrets are read from the environment (optionally via a ``.env`` file)
so they never need to live in the YAML file.
"""

import logging
import os
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class SupabaseConfig(BaseModel):
    """Connection settings for the hosted auth and storage platform."""

    url: str = ""
    anon_key: str = ""
    # Server-side key for background downloads and signing; falls back to anon_key.
    service_role_key: str = ""
    timeout_seconds: float = 30.0


class DatabaseConfig(BaseModel):
    """Relational database settings."""

    url: str = "sqlite:///docscan.db"
    echo: bool = False
    embedding_dimensions: int = 1536


class StorageConfig(BaseModel):
    """Object storage settings."""

    bucket: str = "documents"
    signed_url_expiry_seconds: int = 3600


class OCRConfig(BaseModel):
    """Configuration for the managed OCR API and its provider fallback."""

    api_key: str = ""
    base_url: str = "https://api.edenai.run/v2"
    language: str = "en"
    pdf_providers: list[str] = Field(default_factory=lambda: ["mistral", "google"])
    image_providers: list[str] = Field(
        default_factory=lambda: ["google", "microsoft"]
    )
    poll_interval_seconds: float = 10.0
    max_poll_attempts: int = 30
    request_timeout_seconds: float = 60.0
    local_fallback: bool = False
    tesseract_cmd: str | None = None
    tesseract_lang: str = "eng"
    pdf_dpi: int = 300


class LLMConfig(BaseModel):
    """Configuration for the embeddings and chat models."""

    api_key: str = ""
    embedding_model: str = "text-embedding-3-small"
    chat_model: str = "gpt-3.5-turbo"
    timeout_seconds: float = 30.0
    min_refine_chars: int = 100
    max_input_chars: int = 15000
    max_prompt_chars: int = 12000
    short_prompt_chars: int = 5000
    classify_input_chars: int = 10000


class ChunkingConfig(BaseModel):
    """Configuration for splitting text into embedding chunks."""

    max_tokens: int = 1000
    overlap_tokens: int = 200
    batch_size: int = 5
    batch_delay_seconds: float = 0.5


class SearchConfig(BaseModel):
    """Configuration for semantic document search."""

    min_threshold: float = 0.65
    default_limit: int = 10
    candidate_multiplier: int = 2
    importance_weights: dict[str, float] = Field(
        default_factory=lambda: {"high": 1.5, "medium": 1.0, "low": 0.7}
    )


class UploadConfig(BaseModel):
    """Limits applied to uploaded files."""

    max_file_size_bytes: int = 50 * 1024 * 1024
    supported_formats: list[str] = Field(
        default_factory=lambda: [
            "image/jpeg",
            "image/png",
            "image/gif",
            "image/bmp",
            "image/tiff",
            "application/pdf",
        ]
    )


class AuthConfig(BaseModel):
    """Client-side session handling."""

    session_file: str = "~/.docscan/session.json"
    refresh_margin_seconds: int = 60


class AppConfig(BaseModel):
    """Top-level application configuration."""

    supabase: SupabaseConfig = Field(default_factory=SupabaseConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    ocr: OCRConfig = Field(default_factory=OCRConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    upload: UploadConfig = Field(default_factory=UploadConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    log_level: str = "INFO"


# (section, field) pairs overridden by environment variables when set.
_ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "SUPABASE_URL": ("supabase", "url"),
    "SUPABASE_ANON_KEY": ("supabase", "anon_key"),
    "SUPABASE_SERVICE_ROLE_KEY": ("supabase", "service_role_key"),
    "DATABASE_URL": ("database", "url"),
    "EDEN_AI_API_KEY": ("ocr", "api_key"),
    "OPENAI_API_KEY": ("llm", "api_key"),
    "DOCSCAN_LOG_LEVEL": (None, "log_level"),
}


def _apply_env_overrides(raw: dict) -> dict:
    """Merge environment variables into the raw configuration mapping."""
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if not value:
            continue
        if section is None:
            raw[key] = value
        else:
            raw.setdefault(section, {})
            raw[section][key] = value
    return raw


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a YAML file and the environment.

    Args:
        path: Path to the YAML configuration file.
            Defaults to configs/config.yaml.

    Returns:
        Validated application configuration.
    """
    if path is None:
        path = Path("configs/config.yaml")

    load_dotenv()

    raw: dict = {}
    if path.exists():
        logger.info("Loading configuration from %s", path)
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    else:
        logger.info("No config file found at %s, using defaults", path)

    return AppConfig(**_apply_env_overrides(raw))


def validate_config(config: AppConfig) -> list[str]:
    """Return the list of required settings that are missing."""
    errors: list[str] = []
    if not config.ocr.api_key and not config.ocr.local_fallback:
        errors.append("Eden AI API key is required")
    if not config.llm.api_key:
        errors.append("OpenAI API key is required")
    if not config.supabase.url:
        errors.append("Supabase URL is required")
    if not config.supabase.anon_key:
        errors.append("Supabase anonymous key is required")
    return errors


def log_config_status(config: AppConfig) -> None:
    """Log which external integrations are configured, never their values."""

    def _state(value: str) -> str:
        return "configured" if value else "missing"

    logger.info("OCR API: %s", _state(config.ocr.api_key))
    logger.info("OpenAI API: %s", _state(config.llm.api_key))
    logger.info("Supabase URL: %s", _state(config.supabase.url))
    logger.info("Supabase key: %s", _state(config.supabase.anon_key))
    logger.info("Supabase service key: %s", _state(config.supabase.service_role_key))
