"""
HTTP client for the lead import service.

Endpoints consumed:
- POST /leads/bulk-upload/inspect   - stage a file and get its structure
- POST /leads/bulk-upload           - queue an import job (or legacy inline import)
- GET  /leads/import-jobs/{jobId}   - poll a job's status
- GET  /form-builder/forms/{formId} - form fields for template generation

The service wraps payloads as {"success": ..., "data": ..., "message": ...}.
"""

import json
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from leadimport.config import settings
from leadimport.schemas.bulk_upload import (
    FormField,
    ImportJobCreated,
    JobStatusSnapshot,
    LegacyImportResult,
    UploadAnalysis,
)

logger = logging.getLogger(__name__)


class ImportAPIError(Exception):
    """A failed call to the import service, carrying a user-facing message."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict):
        for key in ("message", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value
    return fallback


def _unwrap(body: Any) -> Any:
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


class LeadImportClient:
    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.token = token if token is not None else settings.API_TOKEN
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(self, method: str, path: str, fallback: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"Import service unreachable: {method} {url}: {e}")
            raise ImportAPIError(str(e) or fallback) from e

        if response.status_code >= 400:
            message = _error_message(response, fallback)
            logger.warning(f"Import service error: {method} {url} -> {response.status_code} {message}")
            raise ImportAPIError(message, response.status_code)

        try:
            return _unwrap(response.json())
        except ValueError as e:
            raise ImportAPIError(fallback, response.status_code) from e

    async def inspect_bulk_upload(self, filename: str, content: bytes) -> UploadAnalysis:
        fallback = "Failed to analyze file. Please try again."
        data = await self._request(
            "POST",
            "/leads/bulk-upload/inspect",
            fallback,
            files={"file": (filename, content)},
        )
        if not data:
            raise ImportAPIError("No analysis data received")
        try:
            return UploadAnalysis.model_validate(data)
        except ValidationError as e:
            raise ImportAPIError(fallback) from e

    async def bulk_upload(
        self,
        *,
        source: str,
        upload_token: str | None = None,
        file: tuple[str, bytes] | None = None,
        form_id: str | None = None,
        selected_sheets: list[str] | None = None,
    ) -> ImportJobCreated | LegacyImportResult:
        """Submit an import.

        The staged upload token is preferred; the raw file is only sent when
        no token is available. Returns the queued job, or the inline result
        from deployments without a job queue.
        """
        fallback = "Upload failed. Please try again."
        form: dict[str, str] = {"source": source or settings.DEFAULT_SOURCE}
        files = None
        if upload_token:
            form["uploadToken"] = upload_token
        elif file is not None:
            files = {"file": file}
        else:
            raise ImportAPIError("Please select a file first")
        if form_id:
            form["formId"] = form_id
        if selected_sheets is not None:
            form["selectedSheets"] = json.dumps(selected_sheets)

        data = await self._request("POST", "/leads/bulk-upload", fallback, data=form, files=files)
        if not data or not isinstance(data, dict):
            raise ImportAPIError("Upload response was empty")
        try:
            if data.get("jobId"):
                return ImportJobCreated.model_validate(data)
            return LegacyImportResult.model_validate(data)
        except ValidationError as e:
            raise ImportAPIError(fallback) from e

    async def get_import_job_status(self, job_id: str) -> JobStatusSnapshot:
        fallback = "Failed to fetch import status. Please try again."
        data = await self._request("GET", f"/leads/import-jobs/{job_id}", fallback)
        if not data:
            raise ImportAPIError(fallback)
        try:
            return JobStatusSnapshot.model_validate(data)
        except ValidationError as e:
            raise ImportAPIError(fallback) from e

    async def get_form_fields(self, form_id: str) -> list[FormField]:
        data = await self._request(
            "GET",
            f"/form-builder/forms/{form_id}",
            "Failed to load form template.",
            params={"includeFields": "true"},
        )
        fields = data.get("fields") if isinstance(data, dict) else None
        if not isinstance(fields, list):
            return []
        return [FormField.model_validate(f) for f in fields if isinstance(f, dict)]
