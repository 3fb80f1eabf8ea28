"""
Document stores — where tender document bytes live.

The pipeline only sees the DocumentStore protocol.  `storage_key` on a
Document is either a path relative to DOCUMENT_STORAGE_ROOT or an
http(s) URL; `RoutingDocumentStore` picks the backend by scheme.

Fetch failures raise StepExecutionError so the runner may retry them.
"""

from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Protocol

import httpx

from app.core.config import settings
from app.core.logging import get_logger
from app.db.models.document import Document
from app.pipeline.errors import StepExecutionError

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


class DocumentStore(Protocol):
    async def fetch(self, document: Document) -> bytes: ...


def safe_filename(filename: str) -> str:
    return _UNSAFE_CHARS.sub("_", filename) or "document"


def is_remote(storage_key: str | None) -> bool:
    return bool(storage_key) and storage_key.lower().startswith(("http://", "https://"))


class LocalDocumentStore:
    """Documents stored on the local filesystem under a root directory."""

    def __init__(self, root: str | Path | None = None) -> None:
        self.root = Path(root or settings.DOCUMENT_STORAGE_ROOT).resolve()

    def _resolve(self, storage_key: str) -> Path:
        path = (self.root / storage_key).resolve()
        if not path.is_relative_to(self.root):
            raise StepExecutionError(f"Storage key escapes the storage root: {storage_key}")
        return path

    async def fetch(self, document: Document) -> bytes:
        key = document.storage_key or document.filename
        path = self._resolve(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise StepExecutionError(f"Could not read document {document.filename}: {exc}") from exc

    async def save(self, tender_id: str, filename: str, content: bytes) -> str:
        """Write bytes under <root>/<tender_id>/ and return the storage key."""
        key = f"{tender_id}/{safe_filename(filename)}"
        path = self._resolve(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)

        await asyncio.to_thread(_write)
        logger.info("Document stored", storage_key=key, size=len(content))
        return key


class HttpDocumentStore:
    """Documents fetched from an http(s) URL held in `storage_key`."""

    def __init__(self, timeout: float | None = None, client: httpx.AsyncClient | None = None) -> None:
        self._timeout = timeout or settings.DOCUMENT_FETCH_TIMEOUT
        self._client = client

    async def fetch(self, document: Document) -> bytes:
        url = document.storage_key
        logger.info("Fetching document", document_id=str(document.id), url=url)
        try:
            if self._client is not None:
                response = await self._client.get(url)
            else:
                async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                    response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StepExecutionError(f"Document download failed for {url}: {exc}") from exc
        return response.content


class RoutingDocumentStore:
    """Dispatch to the HTTP store for URLs and the local store otherwise."""

    def __init__(
        self,
        local: LocalDocumentStore | None = None,
        remote: HttpDocumentStore | None = None,
    ) -> None:
        self.local = local or LocalDocumentStore()
        self.remote = remote or HttpDocumentStore()

    async def fetch(self, document: Document) -> bytes:
        if is_remote(document.storage_key):
            return await self.remote.fetch(document)
        return await self.local.fetch(document)
