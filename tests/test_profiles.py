"""Tests for user profiles and document statistics."""

import pytest

from docscan.auth.profiles import ProfileService
from docscan.errors import ProfileConflictError
from docscan.storage.models import OCRStatus


class TestCreateProfile:
    """Tests for profile creation."""

    def test_defaults(self, profiles: ProfileService) -> None:
        profile = profiles.create_profile("user-9", "bob@example.com")
        assert profile.full_name == "User"
        assert profile.subscription_tier == "free"
        assert profile.document_count == 0
        assert profile.storage_used_mb == 0.0

    def test_existing_id_returned(self, profiles: ProfileService, user) -> None:
        again = profiles.create_profile("user-1", "alice@example.com", "Other")
        assert again.id == "user-1"
        assert again.full_name == "Alice"

    def test_email_conflict(self, profiles: ProfileService, user) -> None:
        with pytest.raises(ProfileConflictError, match="already registered"):
            profiles.create_profile("user-2", "alice@example.com")

    def test_get_or_create(self, profiles: ProfileService) -> None:
        first = profiles.get_or_create_profile("user-3", "c@example.com", "Cleo")
        second = profiles.get_or_create_profile("user-3", "c@example.com")
        assert first.id == second.id == "user-3"
        assert second.full_name == "Cleo"

    def test_get_unknown(self, profiles: ProfileService) -> None:
        assert profiles.get_profile("nobody") is None


class TestUpdateProfile:
    """Tests for whitelisted profile updates."""

    def test_whitelisted_fields_only(self, profiles: ProfileService, user) -> None:
        updated = profiles.update_profile(
            "user-1",
            full_name="Alice B",
            timezone="Europe/Paris",
            subscription_tier="pro",
            email="evil@example.com",
        )
        assert updated.full_name == "Alice B"
        assert updated.timezone == "Europe/Paris"
        assert updated.subscription_tier == "free"
        assert updated.email == "alice@example.com"

    def test_unknown_user(self, profiles: ProfileService) -> None:
        assert profiles.update_profile("nobody", full_name="X") is None


class TestStats:
    """Tests for upload/deletion counters and stats."""

    def test_upload_and_delete_counters(self, profiles: ProfileService, user) -> None:
        profiles.record_upload("user-1", 3 * 1024 * 1024)
        profiles.record_upload("user-1", 1024 * 1024 // 2)
        profile = profiles.get_profile("user-1")
        assert profile.document_count == 2
        assert profile.storage_used_mb == 3.5

        profiles.record_deletion("user-1", 3 * 1024 * 1024)
        profile = profiles.get_profile("user-1")
        assert profile.document_count == 1
        assert profile.storage_used_mb == 0.5

    def test_never_negative(self, profiles: ProfileService, user) -> None:
        profiles.record_deletion("user-1", 10 * 1024 * 1024)
        profiles.record_deletion("user-1", 10 * 1024 * 1024)
        profile = profiles.get_profile("user-1")
        assert profile.document_count == 0
        assert profile.storage_used_mb == 0.0

    def test_processed_counts_completed_and_fallback(
        self, profiles: ProfileService, user, make_document
    ) -> None:
        make_document(ocr_status=OCRStatus.COMPLETED)
        make_document(ocr_status=OCRStatus.FALLBACK)
        make_document(ocr_status=OCRStatus.PARTIAL)
        make_document(ocr_status=OCRStatus.FAILED)
        for _ in range(4):
            profiles.record_upload("user-1", 1024 * 1024)

        stats = profiles.get_stats("user-1")
        assert stats.total_documents == 4
        assert stats.processed_documents == 2
        assert stats.storage_used_mb == 4.0

    def test_stats_unknown_user(self, profiles: ProfileService) -> None:
        assert profiles.get_stats("nobody") is None
