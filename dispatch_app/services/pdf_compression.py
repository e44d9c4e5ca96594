from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from typing import Any

import requests

from dispatch_app.core.config import PLACEHOLDER_COMPRESSION_KEYS, settings as core_settings
from dispatch_app.core.errors import CompressionFailure, ExternalServiceError
from dispatch_app.services.pdf_validation import validate_pdf
from dispatch_app.services.storage_keys import sanitize_filename, timestamped_filename


logger = logging.getLogger(__name__)

UNPROCESSABLE_API_MESSAGE = "Request can't be processed successfully"
PERCENT = Decimal("0.01")

_STATUS_FAILURES: dict[int, tuple[CompressionFailure, str]] = {
    401: (CompressionFailure.INVALID_CREDENTIALS, "Invalid API credentials"),
    403: (CompressionFailure.FORBIDDEN, "API access forbidden - check your subscription"),
    413: (CompressionFailure.OVERSIZE, "File too large for compression service"),
}


@dataclass
class CompressionResult:
    success: bool
    compressed_bytes: bytes | None = None
    original_size: int | None = None
    compressed_size: int | None = None
    compression_ratio: float | None = None
    error: str | None = None
    failure: CompressionFailure | None = None


def compression_ratio(original_size: int, compressed_size: int) -> float:
    if original_size <= 0:
        return 0.0
    saved = Decimal(original_size - compressed_size) * 100 / Decimal(original_size)
    return float(saved.quantize(PERCENT, rounding=ROUND_HALF_UP))


def _api_error_message(response: requests.Response) -> str | None:
    try:
        body: Any = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("message")
    return body.get("message") if isinstance(body.get("message"), str) else None


def classify_http_error(response: requests.Response) -> ExternalServiceError:
    status_code = response.status_code
    if status_code in _STATUS_FAILURES:
        kind, message = _STATUS_FAILURES[status_code]
        return ExternalServiceError(message, kind=kind, http_status=status_code)

    if status_code == 400:
        if _api_error_message(response) == UNPROCESSABLE_API_MESSAGE:
            message = (
                "PDF compression service cannot process this file. The file may be "
                "password-protected, corrupted, or in an unsupported format."
            )
        else:
            message = "PDF file may be corrupted or in an unsupported format"
        return ExternalServiceError(message, kind=CompressionFailure.MALFORMED_REQUEST, http_status=status_code)

    if status_code >= 500:
        return ExternalServiceError(
            f"Compression service unavailable (HTTP {status_code})",
            kind=CompressionFailure.UNAVAILABLE,
            http_status=status_code,
        )

    detail = _api_error_message(response) or response.reason or "unexpected response"
    return ExternalServiceError(
        f"Compression service error (HTTP {status_code}): {detail}",
        kind=CompressionFailure.UNKNOWN,
        http_status=status_code,
    )


class ILovePdfClient:
    """Minimal iLovePDF REST client: auth, start, upload, process, download."""

    def __init__(
        self,
        public_key: str,
        secret_key: str,
        *,
        api_url: str | None = None,
        timeout_seconds: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.public_key = public_key
        self.secret_key = secret_key
        self.api_url = (api_url or core_settings.ILOVEPDF_API_URL).rstrip("/")
        self.timeout_seconds = max(float(timeout_seconds or core_settings.COMPRESSION_TIMEOUT_SECONDS), 1.0)
        self.session = session or requests.Session()
        self._token: str | None = None

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            response = self.session.request(method, url, timeout=self.timeout_seconds, **kwargs)
        except requests.Timeout as exc:
            raise ExternalServiceError(
                f"Compression service timed out after {self.timeout_seconds:g} seconds",
                kind=CompressionFailure.TIMEOUT,
            ) from exc
        except requests.RequestException as exc:
            raise ExternalServiceError(
                f"Compression service request failed: {exc}",
                kind=CompressionFailure.UNKNOWN,
            ) from exc

        if response.status_code >= 400:
            raise classify_http_error(response)
        return response

    def _auth_headers(self) -> dict[str, str]:
        if self._token is None:
            self._token = self.authenticate()
        return {"Authorization": f"Bearer {self._token}"}

    def authenticate(self) -> str:
        response = self._request("POST", f"{self.api_url}/auth", json={"public_key": self.public_key})
        token = (response.json() or {}).get("token")
        if not token:
            raise ExternalServiceError("Compression service returned no auth token", kind=CompressionFailure.UNKNOWN)
        return token

    def start_task(self, tool: str = "compress") -> tuple[str, str]:
        response = self._request("GET", f"{self.api_url}/start/{tool}", headers=self._auth_headers())
        body = response.json() or {}
        server, task = body.get("server"), body.get("task")
        if not server or not task:
            raise ExternalServiceError("Compression service did not start a task", kind=CompressionFailure.UNKNOWN)
        return server, task

    def upload_file(self, server: str, task: str, path: Path) -> str:
        with path.open("rb") as file_handle:
            response = self._request(
                "POST",
                f"https://{server}/v1/upload",
                headers=self._auth_headers(),
                data={"task": task},
                files={"file": (path.name, file_handle, "application/pdf")},
            )
        server_filename = (response.json() or {}).get("server_filename")
        if not server_filename:
            raise ExternalServiceError("Compression service rejected the upload", kind=CompressionFailure.UNKNOWN)
        return server_filename

    def process(self, server: str, task: str, *, server_filename: str, filename: str, compression_level: str) -> None:
        self._request(
            "POST",
            f"https://{server}/v1/process",
            headers=self._auth_headers(),
            json={
                "task": task,
                "tool": "compress",
                "compression_level": compression_level,
                "files": [{"server_filename": server_filename, "filename": filename}],
            },
        )

    def download(self, server: str, task: str) -> bytes:
        response = self._request("GET", f"https://{server}/v1/download/{task}", headers=self._auth_headers())
        return response.content

    def compress_file(self, path: Path, *, filename: str, compression_level: str) -> bytes:
        server, task = self.start_task("compress")
        server_filename = self.upload_file(server, task, path)
        self.process(
            server,
            task,
            server_filename=server_filename,
            filename=filename,
            compression_level=compression_level,
        )
        return self.download(server, task)


def compression_credentials() -> tuple[str, str]:
    return (
        (core_settings.ILOVEPDF_PUBLIC_KEY or "").strip(),
        (core_settings.ILOVEPDF_SECRET_KEY or "").strip(),
    )


def build_client() -> ILovePdfClient | None:
    public_key, secret_key = compression_credentials()
    if not public_key or not secret_key:
        return None
    return ILovePdfClient(public_key, secret_key)


def _temp_input_path(filename: str) -> Path:
    temp_dir = Path(core_settings.COMPRESSION_TEMP_DIR)
    temp_dir.mkdir(parents=True, exist_ok=True)
    return temp_dir / timestamped_filename(sanitize_filename(filename))


def _failure(error: str, failure: CompressionFailure, original_size: int | None = None) -> CompressionResult:
    return CompressionResult(success=False, error=error, failure=failure, original_size=original_size)


def compress_pdf_bytes(
    file_bytes: bytes,
    filename: str,
    *,
    client: ILovePdfClient | None = None,
    compression_level: str | None = None,
) -> CompressionResult:
    if not file_bytes:
        return _failure("Invalid file buffer provided", CompressionFailure.MALFORMED_REQUEST)

    validation = validate_pdf(file_bytes)
    if not validation.is_valid:
        return _failure(validation.error or "Invalid PDF file", CompressionFailure.MALFORMED_REQUEST, len(file_bytes))

    original_size = len(file_bytes)
    max_api_bytes = core_settings.COMPRESSION_MAX_API_MB * 1024 * 1024
    if original_size > max_api_bytes:
        return _failure(
            f"File too large for compression service (max {core_settings.COMPRESSION_MAX_API_MB}MB)",
            CompressionFailure.OVERSIZE,
            original_size,
        )

    client = client or build_client()
    if client is None:
        return _failure(
            "iLoveAPI credentials not configured. Please set ILOVEPDF_PUBLIC_KEY and ILOVEPDF_SECRET_KEY.",
            CompressionFailure.NOT_CONFIGURED,
            original_size,
        )

    level = compression_level or core_settings.COMPRESSION_LEVEL
    max_attempts = max(int(core_settings.COMPRESSION_MAX_ATTEMPTS or 1), 1)
    temp_path: Path | None = None
    try:
        temp_path = _temp_input_path(filename)
        temp_path.write_bytes(file_bytes)

        attempt = 0
        while True:
            attempt += 1
            try:
                compressed = client.compress_file(temp_path, filename=filename, compression_level=level)
                break
            except ExternalServiceError as exc:
                if exc.is_transient and attempt < max_attempts:
                    logger.warning(
                        "pdf_compression: transient failure attempt=%d/%d file=%s error=%s",
                        attempt,
                        max_attempts,
                        filename,
                        exc.message,
                    )
                    time.sleep(core_settings.COMPRESSION_BACKOFF_SECONDS * attempt)
                    continue
                logger.info("pdf_compression: failed file=%s kind=%s error=%s", filename, exc.kind.value, exc.message)
                return _failure(exc.message, exc.kind, original_size)
    except OSError as exc:
        logger.error("pdf_compression: temp file error file=%s error=%s", filename, exc)
        return _failure(f"Temporary file error: {exc}", CompressionFailure.UNKNOWN, original_size)
    finally:
        if temp_path is not None:
            try:
                temp_path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("pdf_compression: temp cleanup failed path=%s error=%s", temp_path, exc)

    compressed_size = len(compressed)
    return CompressionResult(
        success=True,
        compressed_bytes=compressed,
        original_size=original_size,
        compressed_size=compressed_size,
        compression_ratio=compression_ratio(original_size, compressed_size),
    )


def check_compression_credentials(client: ILovePdfClient | None = None) -> dict[str, Any]:
    public_key, secret_key = compression_credentials()
    if not public_key or not secret_key:
        return {
            "ok": False,
            "error": "API credentials not configured",
            "details": {
                "public_key": "Set" if public_key else "Missing",
                "secret_key": "Set" if secret_key else "Missing",
            },
        }

    if public_key in PLACEHOLDER_COMPRESSION_KEYS or secret_key in PLACEHOLDER_COMPRESSION_KEYS:
        return {
            "ok": False,
            "error": "API credentials are still set to placeholder values",
            "details": {
                "public_key": "Placeholder" if public_key in PLACEHOLDER_COMPRESSION_KEYS else "Set",
                "secret_key": "Placeholder" if secret_key in PLACEHOLDER_COMPRESSION_KEYS else "Set",
            },
        }

    client = client or ILovePdfClient(public_key, secret_key)
    try:
        client.start_task("compress")
    except ExternalServiceError as exc:
        return {
            "ok": False,
            "error": exc.message,
            "details": {"kind": exc.kind.value, "http_status": exc.http_status},
        }

    return {
        "ok": True,
        "message": "iLoveAPI credentials are working correctly",
        "details": {"public_key": f"{public_key[:20]}...", "api_version": "v1"},
    }
