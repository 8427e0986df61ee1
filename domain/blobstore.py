"""Where uploaded banner and profile images end up."""
import asyncio
import logging
from pathlib import Path
from typing import Protocol
import uuid

import httpx

from domain.errors import InfrastructureError, ValidationError


logger = logging.getLogger(__name__)


IMAGE_TYPES = {
    ".jpeg": "image/jpeg",
    ".jpg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}
MAX_UPLOAD_BYTES = 10 * 1024 * 1024


class Upload:
    def __init__(self, *, data: bytes, filename: str, content_type: str) -> None:
        self.data = data
        self.filename = filename
        self.content_type = content_type

    def __repr__(self) -> str:
        return f"<Upload(filename={self.filename}, size={len(self.data)})>"


def check_image(upload: Upload, *, max_bytes: int = MAX_UPLOAD_BYTES) -> str:
    """Validate an image upload and return its extension."""
    ext = Path(upload.filename).suffix.lower()
    content_type = upload.content_type.lower()
    if content_type == "image/jpg":
        content_type = "image/jpeg"
    if ext not in IMAGE_TYPES or IMAGE_TYPES[ext] != content_type:
        raise ValidationError("Only image files are allowed (jpeg, jpg, png, gif, webp).")
    if not upload.data:
        raise ValidationError("Uploaded file is empty.")
    if len(upload.data) > max_bytes:
        raise ValidationError(f"Uploaded file is larger than {max_bytes} bytes.")
    return ext


class BlobStore(Protocol):
    async def put(self, upload: Upload) -> str:
        ...

    async def delete(self, url: str) -> None:
        ...


class LocalBlobStore:
    def __init__(
        self,
        *,
        directory: Path,
        base_url: str,
        max_bytes: int = MAX_UPLOAD_BYTES,
    ) -> None:
        self.directory = directory
        self.base_url = base_url.rstrip("/")
        self.max_bytes = max_bytes

    async def put(self, upload: Upload) -> str:
        ext = check_image(upload, max_bytes=self.max_bytes)
        path = self.directory / f"{uuid.uuid4().hex}{ext}"
        try:
            await asyncio.to_thread(self.directory.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(path.write_bytes, upload.data)
        except OSError as e:
            raise InfrastructureError(f"Could not store {upload.filename}.") from e
        logger.info("Stored %s as %s", upload.filename, path.name)
        return f"{self.base_url}/{path.name}"

    async def delete(self, url: str) -> None:
        """Remove a file this store handed out. Unknown URLs are ignored."""
        prefix = f"{self.base_url}/"
        if not url.startswith(prefix):
            return
        path = self.directory / Path(url[len(prefix):]).name
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as e:
            raise InfrastructureError(f"Could not remove {path.name}.") from e
        logger.info("Removed %s", path.name)


class HttpBlobStore:
    """Object storage reachable with plain HTTP PUTs."""

    def __init__(
        self,
        *,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        max_bytes: int = MAX_UPLOAD_BYTES,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(timeout=20) if client is None else client
        self.max_bytes = max_bytes

    async def put(self, upload: Upload) -> str:
        ext = check_image(upload, max_bytes=self.max_bytes)
        url = f"{self.base_url}/images/{uuid.uuid4().hex}{ext}"
        try:
            resp = await self.client.put(
                url,
                content=upload.data,
                headers={"Content-Type": upload.content_type},
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise InfrastructureError(f"Could not store {upload.filename}.") from e
        logger.info("Uploaded %s to %s", upload.filename, url)
        return url

    async def delete(self, url: str) -> None:
        if not url.startswith(f"{self.base_url}/"):
            return
        try:
            resp = await self.client.delete(url)
            if resp.status_code != 404:
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise InfrastructureError(f"Could not remove {url}.") from e
        logger.info("Removed %s", url)

    async def close(self) -> None:
        await self.client.aclose()
