"""HTTP client for the DermaCheck classification service."""
from __future__ import annotations

import io
import json
import logging
import secrets
import string
import time
from typing import Any, Dict, List, Mapping, Optional, Union
from urllib.parse import quote

import requests
from PIL import Image
from pydantic import ValidationError as PydanticValidationError

from dermacheck.core.config import Settings, get_settings
from dermacheck.core.errors import ConnectivityError, DecodeError, ServerError, ValidationError
from dermacheck.schemas.analysis import (
    AnalysisResult,
    HistoryEntry,
    HistoryItem,
    MedicalAdvice,
    ScanResponse,
    Submission,
)
from dermacheck.schemas.profile import ProfileAttributes

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_UPLOAD_BYTES = 5 * 1024 * 1024
ACCEPTED_IMAGE_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
    "WEBP": "image/webp",
    "BMP": "image/bmp",
}


def detect_image_type(image_bytes: bytes, max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES) -> str:
    """Return the MIME type of an acceptable upload, or raise ValidationError."""
    if not image_bytes:
        raise ValidationError("The selected image is empty. Please choose another file.")
    if len(image_bytes) > max_bytes:
        limit_mb = max_bytes / (1024 * 1024)
        raise ValidationError(f"File size too large. Please upload an image under {limit_mb:g}MB.")
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            fmt = img.format
    except (OSError, Image.DecompressionBombError) as exc:
        raise ValidationError("Unsupported file type. Please upload a JPEG, PNG, GIF, WEBP or BMP image.") from exc
    if fmt not in ACCEPTED_IMAGE_TYPES:
        raise ValidationError(f"Unsupported image format: {fmt}.")
    return ACCEPTED_IMAGE_TYPES[fmt]


def unique_filename(mime_type: str) -> str:
    suffix = "".join(secrets.choice(string.ascii_lowercase + string.digits) for _ in range(7))
    extension = mime_type.split("/")[-1] or "jpg"
    return f"skin-image-{int(time.time() * 1000)}-{suffix}.{extension}"


def decode_medical_advice(raw: Any) -> MedicalAdvice:
    """Accept advice either as a JSON-encoded string or as an already-structured object."""
    if raw is None:
        return MedicalAdvice()
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise DecodeError(f"medical_advice is not valid JSON: {exc}") from exc
    try:
        return MedicalAdvice.model_validate(raw)
    except PydanticValidationError as exc:
        raise DecodeError(f"medical_advice has an unexpected shape: {exc.error_count()} error(s)") from exc


def decode_history_item(raw: Any) -> Optional[HistoryEntry]:
    """Decode one history row. Bad advice degrades to empty lists, a bad envelope drops the row."""
    try:
        item = HistoryItem.model_validate(raw)
    except PydanticValidationError as exc:
        LOGGER.warning("Skipping malformed history row: %s", exc)
        return None

    try:
        advice = decode_medical_advice(item.medical_advice)
    except DecodeError as exc:
        LOGGER.warning("History entry %s: %s", item.id, exc.message)
        advice = MedicalAdvice()

    return HistoryEntry(
        id=item.id,
        created_at=item.created_at,
        result=AnalysisResult.from_advice(item.diagnosis, advice, item.confidence),
        image_url=item.image_url,
    )


def _json_or_none(res: requests.Response) -> Any:
    try:
        return res.json()
    except ValueError:
        return None


def _extract_message(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    for key in ("message", "detail", "error"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    status = payload.get("status")
    if isinstance(status, str) and status and status != "success":
        return status
    return None


class RemoteClient:
    """Typed wrapper over the scan, history and profile endpoints.

    Every ``requests`` failure is translated into a ``DermaCheckError``
    subclass here; nothing from the transport layer escapes.
    """

    def __init__(
        self,
        base_url: str,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
        timeout: float = 120,
        fetch_timeout: float = 30,
        health_timeout: float = 5,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_upload_bytes = max_upload_bytes
        self.timeout = timeout
        self.fetch_timeout = fetch_timeout
        self.health_timeout = health_timeout
        self.session = session or requests.Session()

    # -------------------- Analysis --------------------
    def submit(self, image_bytes: bytes, identity_id: Optional[str], filename: Optional[str] = None) -> Submission:
        mime_type = detect_image_type(image_bytes, self.max_upload_bytes)
        files = {"file": (filename or unique_filename(mime_type), image_bytes, mime_type)}
        data = {"user_id": identity_id} if identity_id else {}
        body = self._request("POST", "/scan", "Scan failed", self.timeout, files=files, data=data)
        try:
            scan = ScanResponse.model_validate(body)
        except PydanticValidationError as exc:
            LOGGER.error("Incomplete /scan payload: %s", exc)
            raise ServerError("The server returned an incomplete analysis result.") from exc
        return scan.to_submission()

    # -------------------- History --------------------
    def fetch_history(self, identity_id: str) -> List[HistoryEntry]:
        """Return history entries in server order (newest first by contract)."""
        path = f"/history/{quote(identity_id, safe='')}"
        body = self._request("GET", path, "Failed to fetch history", self.fetch_timeout)
        rows = body.get("data") or []
        if not isinstance(rows, list):
            raise ServerError("Failed to fetch history: unexpected payload.")
        entries = [decode_history_item(row) for row in rows]
        return [entry for entry in entries if entry is not None]

    # -------------------- Profile --------------------
    def fetch_profile(self, identity_id: str) -> Optional[ProfileAttributes]:
        path = f"/profile/{quote(identity_id, safe='')}"
        body = self._request("GET", path, "Failed to fetch profile", self.fetch_timeout)
        data = body.get("data")
        if not data:
            return None
        try:
            return ProfileAttributes.model_validate(data)
        except PydanticValidationError as exc:
            raise ServerError("Failed to fetch profile: unexpected payload.") from exc

    def update_profile(
        self, identity_id: str, attributes: Union[ProfileAttributes, Mapping[str, Any]]
    ) -> ProfileAttributes:
        if isinstance(attributes, ProfileAttributes):
            updates = attributes.model_dump(exclude_unset=True)
        else:
            updates = dict(attributes)
        payload = {**updates, "user_id": identity_id}
        body = self._request("PUT", "/profile/update", "Failed to update profile", self.fetch_timeout, json=payload)
        data = body.get("data")
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            raise ServerError("Failed to update profile: no profile returned.")
        try:
            return ProfileAttributes.model_validate(data)
        except PydanticValidationError as exc:
            raise ServerError("Failed to update profile: unexpected payload.") from exc

    # -------------------- Health --------------------
    def check_connection(self) -> bool:
        try:
            res = self.session.request("GET", f"{self.base_url}/", timeout=self.health_timeout)
        except requests.RequestException as exc:
            LOGGER.info("Backend probe failed: %s", exc)
            return False
        return res.ok

    def close(self) -> None:
        self.session.close()

    # -------------------- Internal helpers --------------------
    def _unreachable_message(self) -> str:
        return (
            f"Cannot connect to the analysis server at {self.base_url}. "
            "Please make sure the server is running and that DERMACHECK_API_BASE_URL "
            "in your configuration points to it."
        )

    def _request(self, method: str, path: str, failure: str, timeout: float, **kwargs: Any) -> Dict[str, Any]:
        start = time.perf_counter()
        try:
            res = self.session.request(method, f"{self.base_url}{path}", timeout=timeout, **kwargs)
        except requests.RequestException as exc:
            LOGGER.warning("%s %s unreachable: %s", method, path, exc)
            raise ConnectivityError(self._unreachable_message()) from exc

        elapsed = (time.perf_counter() - start) * 1000
        LOGGER.info("%s %s -> %s (%.1f ms)", method, path, res.status_code, elapsed)
        payload = _json_or_none(res)
        if not res.ok:
            message = _extract_message(payload) or f"Server error: {res.status_code} {res.reason}"
            raise ServerError(message, status_code=res.status_code)
        if not isinstance(payload, dict) or payload.get("status") != "success":
            raise ServerError(_extract_message(payload) or failure, status_code=res.status_code)
        return payload


def get_client(settings: Optional[Settings] = None) -> RemoteClient:
    settings = settings or get_settings()
    return RemoteClient(
        base_url=settings.api_base_url,
        max_upload_bytes=settings.DERMACHECK_MAX_UPLOAD_BYTES,
        timeout=settings.DERMACHECK_REQUEST_TIMEOUT,
        fetch_timeout=settings.DERMACHECK_FETCH_TIMEOUT,
        health_timeout=settings.DERMACHECK_HEALTH_TIMEOUT,
    )
