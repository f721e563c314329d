"""
Image uploads to Cloudinary through its REST API.

Without Cloudinary credentials the uploader stays usable: it hands back a
deterministic placeholder image and never touches the network.
"""
import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional
from urllib.parse import quote_plus

import httpx

from config import Settings
from errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

API_BASE = "https://api.cloudinary.com/v1_1"
PLACEHOLDER_PREFIX = "placeholder/"
PLACEHOLDER_SIZE = "300x300"


@dataclass
class UploadResult:
    url: str
    public_id: str
    placeholder: bool = False

    def to_dict(self) -> dict:
        return {"url": self.url, "public_id": self.public_id}


def sign_params(params: Dict[str, str], api_secret: str) -> str:
    """Cloudinary request signature: sha1 over the sorted params followed by the secret."""
    to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params) if params[key] not in (None, ""))
    return hashlib.sha1((to_sign + api_secret).encode("utf-8")).hexdigest()


def is_placeholder(public_id: Optional[str]) -> bool:
    return bool(public_id) and public_id.startswith(PLACEHOLDER_PREFIX)


def user_folder(settings: Settings, user_id: str) -> str:
    return f"{settings.upload_folder}/{user_id}"


def owns_blob(public_id: str, folder: str) -> bool:
    """True when ``public_id`` (placeholder or real) lives under ``folder``."""
    if is_placeholder(public_id):
        public_id = public_id[len(PLACEHOLDER_PREFIX):]
    return public_id.startswith(folder.rstrip("/") + "/")


class Uploader:
    """Upload/delete images; pass ``client`` to reuse (or mock) the HTTP transport."""

    def __init__(self, settings: Settings, client: Optional[httpx.Client] = None):
        self.settings = settings
        self._client = client

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=30.0)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def validate(self, data: bytes, content_type: Optional[str]) -> None:
        if not data:
            raise ValidationError("Uploaded file is empty")
        if len(data) > self.settings.max_upload_bytes:
            limit_mb = self.settings.max_upload_bytes / (1024 * 1024)
            raise ValidationError(f"File is too large, the limit is {limit_mb:g} MB")
        if not content_type or not content_type.startswith("image/"):
            raise ValidationError("Only image files are allowed")

    def upload(self, data: bytes, filename: str, content_type: Optional[str], folder: Optional[str] = None,
               public_id: Optional[str] = None) -> UploadResult:
        self.validate(data, content_type)
        folder = folder or self.settings.upload_folder

        if not self.settings.has_cloudinary_credentials:
            result = self._placeholder(data, filename, folder)
            logger.info("Cloudinary not configured, returning placeholder %s", result.public_id)
            return result

        params = {"folder": folder, "timestamp": str(int(time.time()))}
        if public_id:
            params["public_id"] = public_id
            params["overwrite"] = "true"
        body = self._post("image/upload", params, files={"file": (filename or "upload", data, content_type)})
        return UploadResult(url=body["secure_url"], public_id=body["public_id"])

    def delete(self, public_id: str) -> bool:
        """Remove a stored image. Returns False when there was nothing remote to delete."""
        if not public_id or is_placeholder(public_id) or not self.settings.has_cloudinary_credentials:
            return False
        body = self._post("image/destroy", {"public_id": public_id, "timestamp": str(int(time.time()))})
        return body.get("result") == "ok"

    def _placeholder(self, data: bytes, filename: str, folder: str) -> UploadResult:
        digest = hashlib.sha256(data).hexdigest()[:20]
        text = quote_plus(filename or "Portfolio Image")
        return UploadResult(
            url=f"https://via.placeholder.com/{PLACEHOLDER_SIZE}?text={text}",
            public_id=f"{PLACEHOLDER_PREFIX}{folder}/{digest}",
            placeholder=True,
        )

    def _post(self, endpoint: str, params: Dict[str, str], files=None) -> dict:
        settings = self.settings
        signed = dict(params)
        signed["signature"] = sign_params(params, settings.cloudinary_api_secret)
        signed["api_key"] = settings.cloudinary_api_key
        url = f"{API_BASE}/{settings.cloudinary_cloud_name}/{endpoint}"

        try:
            response = self.client.post(url, data=signed, files=files)
        except httpx.HTTPError as e:
            logger.error("Cloudinary request to %s failed: %s", endpoint, e)
            raise UpstreamError(f"Image storage request failed: {e}")

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            message = (body.get("error") or {}).get("message") or response.text[:200]
            logger.error("Cloudinary %s returned %s: %s", endpoint, response.status_code, message)
            raise UpstreamError(f"Image storage error: {message}")
        return body


def release_blobs(uploader: Optional[Uploader], public_ids: List[str]) -> None:
    """Delete images that a write just stopped referencing. Storage errors are logged, not raised."""
    if uploader is None:
        return
    for public_id in public_ids:
        if not public_id:
            continue
        try:
            uploader.delete(public_id)
        except UpstreamError as e:
            logger.warning("Could not delete image %s: %s", public_id, e)
