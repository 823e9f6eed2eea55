"""Blob storage backends for uploaded documents."""

from iqrchat.providers.blob.local_blob_store import LocalBlobStore

__all__ = ["LocalBlobStore"]
