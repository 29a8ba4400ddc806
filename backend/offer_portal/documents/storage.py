"""Blob storage for published PDF bytes."""

import asyncio
import re
import uuid
from pathlib import Path
from typing import Protocol, runtime_checkable

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,199}$")


@runtime_checkable
class BlobStore(Protocol):
    """Protocol defining the blob store interface."""

    async def put(self, key: str, data: bytes) -> None:
        """Store data under key, replacing any previous value."""
        ...

    async def get(self, key: str) -> bytes | None:
        """Return the data stored under key, or None."""
        ...


def generate_pdf_key(kind: str) -> str:
    return f"{kind}-{uuid.uuid4().hex}.pdf"


def _validate_key(key: str) -> str:
    if not _KEY_PATTERN.match(key) or ".." in key:
        raise ValueError(f"Invalid blob key: {key!r}")
    return key


class LocalBlobStore:
    """Local filesystem blob store.

    Stores files flat at {base_path}/{key}.
    """

    def __init__(self, base_path: str) -> None:
        self.base_path = Path(base_path)

    def _full_path(self, key: str) -> Path:
        """Resolve a blob key to a full filesystem path."""
        return self.base_path / _validate_key(key)

    async def put(self, key: str, data: bytes) -> None:
        full_path = self._full_path(key)

        await asyncio.to_thread(full_path.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(full_path.write_bytes, data)

    async def get(self, key: str) -> bytes | None:
        try:
            full_path = self._full_path(key)
        except ValueError:
            return None
        if not await asyncio.to_thread(full_path.exists):
            return None
        return await asyncio.to_thread(full_path.read_bytes)


class MemoryBlobStore:
    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}

    async def put(self, key: str, data: bytes) -> None:
        self._blobs[_validate_key(key)] = bytes(data)

    async def get(self, key: str) -> bytes | None:
        return self._blobs.get(key)
