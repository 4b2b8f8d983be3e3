"""User profile rows and per-user document statistics."""

from dataclasses import dataclass

from sqlalchemy import func, select

from docscan.errors import ProfileConflictError
from docscan.storage.database import Database
from docscan.storage.models import Document, OCRStatus, User, utcnow
from docscan.utils.logger import get_logger

logger = get_logger(__name__)

_BYTES_PER_MB = 1024 * 1024
_UPDATABLE_FIELDS = ("full_name", "timezone")


@dataclass
class DocumentStats:
    """Document totals shown on a user's home screen."""

    total_documents: int
    processed_documents: int
    storage_used_mb: float


def _round_mb(value: float) -> float:
    return round(value * 10) / 10


class ProfileService:
    """Reads and writes ``users`` rows.

    Args:
        db: Database session factory.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def get_profile(self, user_id: str) -> User | None:
        with self.db.session() as session:
            return session.get(User, user_id)

    def create_profile(
        self, user_id: str, email: str, full_name: str | None = None
    ) -> User:
        """Create a profile, or return the existing one for ``user_id``.

        Raises:
            ProfileConflictError: If ``email`` belongs to another user.
        """
        with self.db.session() as session:
            existing = session.get(User, user_id)
            if existing is not None:
                return existing

            owner = session.scalar(select(User).where(User.email == email))
            if owner is not None:
                raise ProfileConflictError(
                    f"This email ({email}) is already registered with another account"
                )

            profile = User(
                id=user_id,
                email=email,
                full_name=full_name or "User",
                subscription_tier="free",
                document_count=0,
                storage_used_mb=0.0,
            )
            session.add(profile)
        logger.info("Created profile for user %s", user_id)
        return profile

    def get_or_create_profile(
        self, user_id: str, email: str, full_name: str | None = None
    ) -> User:
        profile = self.get_profile(user_id)
        if profile is not None:
            return profile
        return self.create_profile(user_id, email, full_name)

    def update_profile(self, user_id: str, **updates: object) -> User | None:
        """Update whitelisted profile fields; unknown keys are ignored."""
        with self.db.session() as session:
            profile = session.get(User, user_id)
            if profile is None:
                return None
            for key, value in updates.items():
                if key in _UPDATABLE_FIELDS and value is not None:
                    setattr(profile, key, value)
            profile.updated_at = utcnow()
            return profile

    def get_stats(self, user_id: str) -> DocumentStats | None:
        with self.db.session() as session:
            profile = session.get(User, user_id)
            if profile is None:
                return None
            processed = session.scalar(
                select(func.count(Document.id)).where(
                    Document.user_id == user_id,
                    Document.ocr_status.in_(OCRStatus.PROCESSED),
                )
            )
            return DocumentStats(
                total_documents=profile.document_count or 0,
                processed_documents=processed or 0,
                storage_used_mb=_round_mb(float(profile.storage_used_mb or 0)),
            )

    def record_upload(self, user_id: str, size_bytes: int) -> None:
        with self.db.session() as session:
            profile = session.get(User, user_id)
            if profile is None:
                logger.warning("Cannot update stats, no profile for %s", user_id)
                return
            profile.document_count = (profile.document_count or 0) + 1
            profile.storage_used_mb = _round_mb(
                float(profile.storage_used_mb or 0) + size_bytes / _BYTES_PER_MB
            )

    def record_deletion(self, user_id: str, size_bytes: int) -> None:
        with self.db.session() as session:
            profile = session.get(User, user_id)
            if profile is None:
                logger.warning("Cannot update stats, no profile for %s", user_id)
                return
            profile.document_count = max(0, (profile.document_count or 1) - 1)
            profile.storage_used_mb = max(
                0.0,
                _round_mb(
                    float(profile.storage_used_mb or 0) - size_bytes / _BYTES_PER_MB
                ),
            )
