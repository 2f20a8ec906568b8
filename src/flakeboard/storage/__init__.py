"""Persistence and blob storage collaborators."""

from .blob import BlobStorage, SupabaseBlobStorage
from .repositories import LookupRepository, RunRepository

__all__ = [
    "BlobStorage",
    "LookupRepository",
    "RunRepository",
    "SupabaseBlobStorage",
]
