"""Client for the hosted object storage REST API.

Only implements the subset the service needs: upload, download,
remove and signed URLs for a single bucket. Requests carry the service
key unless a user's access token is given, in which case the bucket's
per-user policies apply.
"""

from urllib.parse import quote

import httpx

from docscan.errors import StorageError
from docscan.utils.config import StorageConfig, SupabaseConfig
from docscan.utils.logger import get_logger

logger = get_logger(__name__)


class StorageClient:
    """Thin wrapper over ``/storage/v1`` with timeouts and logging.

    Args:
        supabase: Platform URL and keys.
        storage: Bucket settings.
        client: Optional preconfigured HTTP client (used by tests).
    """

    def __init__(
        self,
        supabase: SupabaseConfig,
        storage: StorageConfig,
        client: httpx.Client | None = None,
    ) -> None:
        self.base = supabase.url.rstrip("/") + "/storage/v1"
        self.bucket = storage.bucket
        self.signed_url_expiry = storage.signed_url_expiry_seconds
        self.http = client or httpx.Client(timeout=supabase.timeout_seconds)
        server_key = supabase.service_role_key or supabase.anon_key
        self.http.headers.update(
            {"apikey": supabase.anon_key, "Authorization": f"Bearer {server_key}"}
        )

    @staticmethod
    def _auth(access_token: str | None) -> dict[str, str]:
        if not access_token:
            return {}
        return {"Authorization": f"Bearer {access_token}"}

    def _object_url(self, kind: str, path: str) -> str:
        return f"{self.base}/object/{kind}{self.bucket}/{quote(path)}"

    def _check(self, response: httpx.Response, action: str, path: str) -> None:
        if response.is_success:
            return
        try:
            body = response.json()
        except ValueError:
            body = None
        detail = response.text
        if isinstance(body, dict):
            detail = body.get("message", detail)
        raise StorageError(
            f"Storage {action} failed for {path} ({response.status_code}): {detail}"
        )

    def upload(
        self,
        path: str,
        content: bytes,
        content_type: str,
        access_token: str | None = None,
    ) -> str:
        """Upload bytes to ``path`` inside the bucket and return the path."""
        try:
            response = self.http.post(
                self._object_url("", path),
                content=content,
                headers={
                    "Content-Type": content_type,
                    "x-upsert": "false",
                    **self._auth(access_token),
                },
            )
        except httpx.HTTPError as exc:
            raise StorageError(f"Storage upload failed for {path}: {exc}") from exc
        self._check(response, "upload", path)
        logger.info("Uploaded %d bytes to %s/%s", len(content), self.bucket, path)
        return path

    def download(self, path: str) -> bytes:
        """Download an object's bytes."""
        try:
            response = self.http.get(self._object_url("authenticated/", path))
        except httpx.HTTPError as exc:
            raise StorageError(f"Storage download failed for {path}: {exc}") from exc
        self._check(response, "download", path)
        return response.content

    def remove(self, paths: list[str], access_token: str | None = None) -> None:
        """Delete objects from the bucket."""
        try:
            response = self.http.request(
                "DELETE",
                f"{self.base}/object/{self.bucket}",
                json={"prefixes": paths},
                headers=self._auth(access_token),
            )
        except httpx.HTTPError as exc:
            raise StorageError(f"Storage remove failed for {paths}: {exc}") from exc
        self._check(response, "remove", ", ".join(paths))
        logger.info("Removed %d object(s) from %s", len(paths), self.bucket)

    def create_signed_url(self, path: str, expires_in: int | None = None) -> str:
        """Create an absolute, time-limited download URL for an object."""
        expires_in = expires_in or self.signed_url_expiry
        try:
            response = self.http.post(
                self._object_url("sign/", path), json={"expiresIn": expires_in}
            )
        except httpx.HTTPError as exc:
            raise StorageError(f"Signing URL failed for {path}: {exc}") from exc
        self._check(response, "sign", path)
        signed = response.json().get("signedURL") or response.json().get("signedUrl")
        if not signed:
            raise StorageError(f"No signed URL returned for {path}")
        if signed.startswith("http"):
            return signed
        return f"{self.base}{signed}"
