"""Filesystem-backed blob store with HMAC-signed read URLs.

Each storage target is a sub-directory of ``storage_root``; a locator is
``"<target>/<key>"``.  Signed URLs have the form::

    local://<target>/<key>?expires=<unix-ts>&signature=<hex>

where the signature is an HMAC-SHA256 over ``"<locator>:<expires>"`` keyed
with ``storage_signing_secret``.  File I/O runs in a worker thread so the
event loop is never blocked by large documents.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import time
from collections.abc import Callable
from pathlib import Path, PurePosixPath
from urllib.parse import parse_qs, quote, unquote, urlparse

import structlog

from iqrchat.interfaces.blob_store import IBlobStore
from iqrchat.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)

_SCHEME = "local"


class LocalBlobStore(IBlobStore):
    """Blob store writing documents under a local directory tree."""

    def __init__(
        self,
        root: str | Path,
        signing_secret: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._root = Path(root)
        self._secret = signing_secret.encode("utf-8")
        self._clock = clock

    async def ensure_targets(self, targets: list[str]) -> None:
        """Create the directories for *targets* if missing."""
        for target in targets:
            self._target_dir(target).mkdir(parents=True, exist_ok=True)
        logger.info("blob_targets_ready", root=str(self._root), targets=targets)

    # ------------------------------------------------------------------
    # IBlobStore implementation
    # ------------------------------------------------------------------

    async def list_targets(self) -> list[str]:
        if not self._root.exists():
            return []
        try:
            entries = await asyncio.to_thread(lambda: sorted(self._root.iterdir()))
        except OSError as exc:
            raise StorageError(
                message=f"Cannot list storage targets: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return [entry.name for entry in entries if entry.is_dir()]

    async def put(self, target: str, key: str, data: bytes) -> str:
        locator = self._locator(target, key)
        path = self._path_for(locator)
        if not self._target_dir(target).exists():
            raise StorageError(
                message=f"Storage target does not exist: {target}",
                provider_name=self.get_provider_name(),
            )

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(path.suffix + ".part")
            tmp.write_bytes(data)
            # Atomic replace so a concurrent reader never sees half a file.
            tmp.replace(path)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise StorageError(
                message=f"Failed to write {locator}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.debug("blob_written", locator=locator, size_bytes=len(data))
        return locator

    async def get(self, locator: str) -> bytes:
        path = self._path_for(locator)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise StorageError(
                message=f"No blob stored at {locator}",
                provider_name=self.get_provider_name(),
            ) from exc
        except OSError as exc:
            raise StorageError(
                message=f"Failed to read {locator}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def signed_url(self, locator: str, ttl_seconds: int) -> str:
        self._path_for(locator)  # validates the locator
        expires = int(self._clock()) + int(ttl_seconds)
        signature = self._sign(locator, expires)
        return f"{_SCHEME}://{quote(locator)}?expires={expires}&signature={signature}"

    async def read_signed_url(self, url: str) -> bytes:
        parsed = urlparse(url)
        if parsed.scheme != _SCHEME:
            raise StorageError(
                message=f"Unsupported URL scheme: {parsed.scheme!r}",
                provider_name=self.get_provider_name(),
            )
        locator = unquote(f"{parsed.netloc}{parsed.path}")
        query = parse_qs(parsed.query)
        try:
            expires = int(query["expires"][0])
            signature = query["signature"][0]
        except (KeyError, IndexError, ValueError) as exc:
            raise StorageError(
                message="Malformed signed URL",
                provider_name=self.get_provider_name(),
            ) from exc

        if not hmac.compare_digest(signature, self._sign(locator, expires)):
            raise StorageError(
                message="Invalid signed URL signature",
                provider_name=self.get_provider_name(),
            )
        if self._clock() > expires:
            raise StorageError(
                message="Signed URL has expired",
                provider_name=self.get_provider_name(),
            )
        return await self.get(locator)

    def get_provider_name(self) -> str:
        return "local-blob"

    def is_available(self) -> bool:
        return bool(self._secret)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _sign(self, locator: str, expires: int) -> str:
        payload = f"{locator}:{expires}".encode()
        return hmac.new(self._secret, payload, hashlib.sha256).hexdigest()

    def _target_dir(self, target: str) -> Path:
        if not target or "/" in target or target in (".", ".."):
            raise StorageError(
                message=f"Invalid storage target: {target!r}",
                provider_name=self.get_provider_name(),
            )
        return self._root / target

    @staticmethod
    def _locator(target: str, key: str) -> str:
        return f"{target}/{key.lstrip('/')}"

    def _path_for(self, locator: str) -> Path:
        parts = PurePosixPath(locator).parts
        if len(parts) < 2 or any(part in ("..", ".") for part in parts):
            raise StorageError(
                message=f"Invalid blob locator: {locator!r}",
                provider_name=self.get_provider_name(),
            )
        return self._target_dir(parts[0]).joinpath(*parts[1:])
