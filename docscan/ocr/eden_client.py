"""Managed OCR API client with sequential provider fallback.

Images are sent as multipart uploads to the synchronous endpoint; PDFs
are submitted by signed URL to the asynchronous endpoint and polled
until the job finishes. Providers come from static, ordered lists and
are tried one at a time until one yields text.
"""

import time
from collections.abc import Callable
from typing import Any

import httpx

from docscan.errors import ConfigError, OCRError, OCRTimeoutError
from docscan.utils.config import OCRConfig
from docscan.utils.logger import get_logger

from .local_engine import LocalOCREngine
from .results import OCRResult, parse_provider_result, provider_error

logger = get_logger(__name__)

PDF_MIME_TYPE = "application/pdf"


def _json_body(response: httpx.Response) -> dict[str, Any]:
    """Decode a JSON object body, raising ``OCRError`` for anything else."""
    try:
        body = response.json()
    except ValueError as exc:
        raise OCRError(
            f"OCR API returned a non-JSON body ({response.status_code})"
        ) from exc
    if not isinstance(body, dict):
        raise OCRError("OCR API returned an unexpected response body")
    return body


class EdenAIClient:
    """Calls the OCR endpoints for a single provider at a time.

    Args:
        config: OCR settings (key, endpoints, polling budget).
        client: Optional preconfigured HTTP client (used by tests).
        sleep: Function used to wait between polls.
    """

    def __init__(
        self,
        config: OCRConfig,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.base = config.base_url.rstrip("/")
        self.http = client or httpx.Client(timeout=config.request_timeout_seconds)
        self.http.headers.update({"Authorization": f"Bearer {config.api_key}"})
        self.sleep = sleep

    def _provider_result(self, provider: str, results: dict[str, Any]) -> OCRResult:
        result = results.get(provider)
        if not isinstance(result, dict):
            raise OCRError(f"{provider} returned no result")
        parsed = parse_provider_result(provider, result)
        if not parsed.text.strip():
            raise OCRError(provider_error(result) or f"{provider} returned no text")
        return parsed

    def ocr_image(
        self, content: bytes, filename: str, mime_type: str, provider: str
    ) -> OCRResult:
        """Run synchronous OCR on an image with one provider."""
        try:
            response = self.http.post(
                f"{self.base}/ocr/ocr",
                data={"providers": provider, "language": self.config.language},
                files={"file": (filename, content, mime_type)},
            )
        except httpx.HTTPError as exc:
            raise OCRError(f"OCR request failed: {exc}") from exc
        if not response.is_success:
            raise OCRError(f"OCR error ({response.status_code}): {response.text}")
        return self._provider_result(provider, _json_body(response))

    def submit_async(self, file_url: str, provider: str) -> str:
        """Submit an asynchronous OCR job and return its public id."""
        try:
            response = self.http.post(
                f"{self.base}/ocr/ocr_async",
                json={
                    "providers": provider,
                    "language": self.config.language,
                    "file_url": file_url,
                },
            )
        except httpx.HTTPError as exc:
            raise OCRError(f"OCR async submit failed: {exc}") from exc
        if not response.is_success:
            raise OCRError(
                f"OCR async error ({response.status_code}): {response.text}"
            )
        public_id = _json_body(response).get("public_id")
        if not public_id:
            raise OCRError("No job ID returned from OCR async endpoint")
        return public_id

    def wait_for_job(self, public_id: str) -> dict[str, Any]:
        """Poll an asynchronous job until it finishes.

        Transport errors, non-2xx responses and undecodable bodies are logged
        and retried on the next attempt.

        Raises:
            OCRError: If the job reports failure.
            OCRTimeoutError: If the polling budget is exhausted.
        """
        for attempt in range(1, self.config.max_poll_attempts + 1):
            self.sleep(self.config.poll_interval_seconds)
            try:
                response = self.http.get(f"{self.base}/ocr/ocr_async/{public_id}")
            except httpx.HTTPError as exc:
                logger.warning("Polling OCR job %s failed: %s", public_id, exc)
                continue
            if not response.is_success:
                logger.warning(
                    "Polling OCR job %s returned %d", public_id, response.status_code
                )
                continue

            try:
                body = _json_body(response)
            except OCRError as exc:
                logger.warning("Polling OCR job %s: %s", public_id, exc)
                continue
            status = body.get("status")
            logger.debug("OCR job %s status %s (attempt %d)", public_id, status, attempt)
            if status == "finished":
                return body
            if status == "failed":
                raise OCRError(
                    f"OCR processing failed: {body.get('error') or 'Unknown error'}"
                )

        raise OCRTimeoutError(
            f"OCR job {public_id} not finished after "
            f"{self.config.max_poll_attempts} attempts"
        )

    def ocr_document(self, file_url: str, provider: str) -> OCRResult:
        """Run asynchronous OCR on a multi-page document with one provider."""
        public_id = self.submit_async(file_url, provider)
        logger.info("Submitted OCR job %s to %s", public_id, provider)
        body = self.wait_for_job(public_id)
        return self._provider_result(provider, body.get("results") or {})


class OCRService:
    """Tries each configured provider in order, then the local engine.

    Args:
        config: OCR settings.
        client: Remote API client. Built from ``config`` when omitted.
        local_engine: Last-resort engine, used only when
            ``config.local_fallback`` is enabled.
    """

    def __init__(
        self,
        config: OCRConfig,
        client: EdenAIClient | None = None,
        local_engine: LocalOCREngine | None = None,
    ) -> None:
        self.config = config
        self.client = client
        if self.client is None and config.api_key:
            self.client = EdenAIClient(config)
        self.local_engine = local_engine
        if self.local_engine is None and config.local_fallback:
            self.local_engine = LocalOCREngine(
                tesseract_cmd=config.tesseract_cmd,
                lang=config.tesseract_lang,
                dpi=config.pdf_dpi,
            )

    def providers_for(self, mime_type: str) -> list[str]:
        if mime_type == PDF_MIME_TYPE:
            return list(self.config.pdf_providers)
        return list(self.config.image_providers)

    def extract(
        self,
        content: bytes,
        filename: str,
        mime_type: str,
        file_url: str | None = None,
    ) -> OCRResult:
        """Extract text, falling back through the provider list.

        Args:
            content: Raw file bytes (used for images and local OCR).
            filename: Original file name sent with multipart uploads.
            mime_type: MIME type selecting the provider list and endpoint.
            file_url: Signed URL for asynchronous PDF processing.

        Raises:
            ConfigError: If no remote key and no local fallback exist.
            OCRError: If every provider failed.
        """
        if self.client is None and self.local_engine is None:
            raise ConfigError("OCR API key not configured and local fallback disabled")

        failures: list[str] = []
        if self.client is not None:
            for provider in self.providers_for(mime_type):
                try:
                    if mime_type == PDF_MIME_TYPE:
                        if not file_url:
                            raise OCRError("PDF OCR requires a file URL")
                        result = self.client.ocr_document(file_url, provider)
                    else:
                        result = self.client.ocr_image(
                            content, filename, mime_type, provider
                        )
                except OCRError as exc:
                    logger.warning("OCR provider %s failed: %s", provider, exc)
                    failures.append(f"{provider}: {exc}")
                    continue
                logger.info(
                    "OCR provider %s extracted %d characters", provider, len(result.text)
                )
                return result

        if self.local_engine is not None:
            logger.info("Falling back to local OCR for %s", filename)
            try:
                result = self.local_engine.extract(content, mime_type)
            except RuntimeError as exc:
                failures.append(f"local: {exc}")
            else:
                if result.text.strip():
                    return result
                failures.append("local: no text")

        raise OCRError("All OCR providers failed: " + "; ".join(failures))
