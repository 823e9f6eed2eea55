"""Abstract base class for blob storage backends.

The blob store holds the uploaded PDF bytes.  It is organised in named
*targets* (buckets); the upload stage picks one from a preference list.
Locators are opaque strings owned by the store, not necessarily URLs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations: LocalBlobStore
# Located in: iqrchat/providers/blob/
class IBlobStore(ABC):
    """Contract for durable document storage used by the upload and extract stages."""

    @abstractmethod
    async def list_targets(self) -> list[str]:
        """Return the names of the storage targets that currently exist.

        Raises
        ------
        iqrchat.utils.errors.StorageError
            If the backend cannot be queried.
        """

    @abstractmethod
    async def put(self, target: str, key: str, data: bytes) -> str:
        """Write *data* under *key* in *target*, overwriting any previous bytes.

        Writing the same key twice yields the same locator, which makes a
        re-upload idempotent.

        Returns
        -------
        str
            The durable locator for the stored bytes.
        """

    @abstractmethod
    async def get(self, locator: str) -> bytes:
        """Return the bytes stored at *locator*.

        Raises
        ------
        iqrchat.utils.errors.StorageError
            If nothing is stored at *locator*.
        """

    @abstractmethod
    def signed_url(self, locator: str, ttl_seconds: int) -> str:
        """Return a URL granting read access to *locator* for *ttl_seconds*."""

    @abstractmethod
    async def read_signed_url(self, url: str) -> bytes:
        """Fetch bytes through a URL produced by :meth:`signed_url`.

        Raises
        ------
        iqrchat.utils.errors.StorageError
            If the URL is malformed, its signature is invalid, or it expired.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier, e.g. ``"local-blob"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the backend is configured and reachable."""
