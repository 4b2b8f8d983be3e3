"""Authentication against the hosted auth REST API and session persistence.

The service never stores passwords. A signed-in session (access and
refresh tokens) is kept in a private JSON file so the CLI survives
restarts, and is refreshed shortly before it expires.
"""

import json
import os
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import httpx

from docscan.errors import AuthError
from docscan.utils.config import AuthConfig, SupabaseConfig
from docscan.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class AuthSession:
    """A signed-in user's tokens and identity."""

    access_token: str
    refresh_token: str
    expires_at: float
    user_id: str
    email: str
    user_metadata: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, margin_seconds: float = 0.0) -> bool:
        return time.time() + margin_seconds >= self.expires_at

    @classmethod
    def from_token_response(cls, data: dict[str, Any]) -> "AuthSession":
        """Build a session from a ``/token`` or ``/signup`` response body."""
        user = data.get("user") or {}
        expires_at = data.get("expires_at")
        if expires_at is None:
            expires_at = time.time() + float(data.get("expires_in", 3600))
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            expires_at=float(expires_at),
            user_id=user.get("id", ""),
            email=user.get("email", ""),
            user_metadata=user.get("user_metadata") or {},
        )


@dataclass
class AuthUser:
    """Identity resolved from an access token."""

    id: str
    email: str
    user_metadata: dict[str, Any] = field(default_factory=dict)


class AuthClient:
    """Client for ``/auth/v1`` endpoints.

    Args:
        config: Platform URL and anonymous key.
        client: Optional preconfigured HTTP client (used by tests).
    """

    def __init__(
        self, config: SupabaseConfig, client: httpx.Client | None = None
    ) -> None:
        self.base = config.url.rstrip("/") + "/auth/v1"
        self.http = client or httpx.Client(timeout=config.timeout_seconds)
        self.http.headers.update({"apikey": config.anon_key})

    def _post(
        self,
        path: str,
        payload: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        token: str | None = None,
    ) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        try:
            response = self.http.post(
                f"{self.base}{path}", json=payload or {}, params=params, headers=headers
            )
        except httpx.HTTPError as exc:
            raise AuthError(f"Auth request to {path} failed: {exc}") from exc
        return self._parse(response, path)

    @staticmethod
    def _parse(response: httpx.Response, path: str) -> dict[str, Any]:
        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}
        if not response.is_success:
            message = response.text
            if isinstance(body, dict):
                message = (
                    body.get("error_description")
                    or body.get("msg")
                    or body.get("message")
                    or message
                )
            raise AuthError(f"{path} failed ({response.status_code}): {message}")
        if not isinstance(body, dict):
            raise AuthError(f"{path} returned an unexpected response body")
        return body

    def sign_up(
        self, email: str, password: str, full_name: str | None = None
    ) -> AuthSession | None:
        """Register a user.

        Returns:
            The new session, or ``None`` when email confirmation is
            required before the first sign-in.
        """
        payload: dict[str, Any] = {"email": email, "password": password}
        if full_name:
            payload["data"] = {"full_name": full_name}
        body = self._post("/signup", payload)
        if "access_token" not in body:
            logger.info("Sign-up for %s awaits email confirmation", email)
            return None
        return AuthSession.from_token_response(body)

    def sign_in(self, email: str, password: str) -> AuthSession:
        body = self._post(
            "/token",
            {"email": email, "password": password},
            params={"grant_type": "password"},
        )
        logger.info("Signed in %s", email)
        return AuthSession.from_token_response(body)

    def refresh(self, refresh_token: str) -> AuthSession:
        body = self._post(
            "/token",
            {"refresh_token": refresh_token},
            params={"grant_type": "refresh_token"},
        )
        return AuthSession.from_token_response(body)

    def sign_out(self, access_token: str) -> None:
        self._post("/logout", token=access_token)

    def reset_password(self, email: str) -> None:
        self._post("/recover", {"email": email})

    def get_user(self, access_token: str) -> AuthUser:
        """Resolve the user that owns ``access_token``."""
        try:
            response = self.http.get(
                f"{self.base}/user",
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            raise AuthError(f"Auth request to /user failed: {exc}") from exc
        body = self._parse(response, "/user")
        return AuthUser(
            id=body["id"],
            email=body.get("email", ""),
            user_metadata=body.get("user_metadata") or {},
        )


class SessionStore:
    """Persists one session as JSON in a file only the owner can read."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> AuthSession | None:
        if not self.path.exists():
            return None
        try:
            return AuthSession(**json.loads(self.path.read_text()))
        except (ValueError, TypeError) as exc:
            logger.warning("Ignoring unreadable session file %s: %s", self.path, exc)
            return None

    def save(self, session: AuthSession) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(asdict(session), f)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class SessionManager:
    """Keeps the stored session fresh.

    Args:
        client: Auth client used for refresh and sign-out.
        store: Where the session is persisted.
        config: Refresh margin settings.
    """

    def __init__(
        self, client: AuthClient, store: SessionStore, config: AuthConfig
    ) -> None:
        self.client = client
        self.store = store
        self.refresh_margin = config.refresh_margin_seconds

    def sign_in(self, email: str, password: str) -> AuthSession:
        session = self.client.sign_in(email, password)
        self.store.save(session)
        return session

    def current_session(self) -> AuthSession:
        """Return a valid session, refreshing it if it is about to expire.

        Raises:
            AuthError: If nobody is signed in or the refresh was rejected.
        """
        session = self.store.load()
        if session is None:
            raise AuthError("Not signed in")
        if not session.is_expired(self.refresh_margin):
            return session

        logger.info("Refreshing session for %s", session.email)
        try:
            refreshed = self.client.refresh(session.refresh_token)
        except AuthError:
            self.store.clear()
            raise
        self.store.save(refreshed)
        return refreshed

    def sign_out(self) -> None:
        session = self.store.load()
        if session is not None:
            try:
                self.client.sign_out(session.access_token)
            except AuthError as exc:
                logger.warning("Remote sign-out failed: %s", exc)
        self.store.clear()
