"""Wire an orchestrator from settings."""

from __future__ import annotations

from typing import TYPE_CHECKING

from flakeboard.config import Settings
from flakeboard.storage.blob import BlobStorage, SupabaseBlobStorage
from flakeboard.storage.sql import SqlLookupRepository, SqlRunRepository
from flakeboard.upload.images import PillowJpegCompressor
from flakeboard.upload.materializer import AttachmentMaterializer
from flakeboard.upload.orchestrator import OrchestratorConfig, UploadOrchestrator

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


def build_blob_storage(settings: Settings) -> BlobStorage | None:
    """Create the HTTP blob store, or None when storage is not configured."""
    if not settings.blob_storage_configured:
        return None
    return SupabaseBlobStorage(
        settings.storage_url,
        settings.storage_service_key,
        max_retries=settings.retry_max_retries,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
    )


def build_materializer(
    settings: Settings, blob_storage: BlobStorage | None = None
) -> AttachmentMaterializer:
    return AttachmentMaterializer(
        blob_storage=blob_storage,
        screenshot_bucket=settings.screenshot_bucket,
        steps_bucket=settings.steps_bucket,
        signed_url_ttl=settings.signed_url_ttl_seconds,
        image_compressor=PillowJpegCompressor(settings.image_quality)
        if settings.compress_images
        else None,
        concurrency=settings.materialize_concurrency,
    )


def build_orchestrator(
    settings: Settings,
    session: AsyncSession,
    blob_storage: BlobStorage | None = None,
) -> UploadOrchestrator:
    """
    Create an orchestrator backed by SQL repositories.

    Args:
        settings: Application settings.
        session: Database session shared by both repositories.
        blob_storage: Overrides the blob store built from settings.

    Returns:
        Configured UploadOrchestrator.
    """
    return UploadOrchestrator(
        lookup_repo=SqlLookupRepository(session),
        run_repo=SqlRunRepository(session),
        materializer=build_materializer(settings, blob_storage or build_blob_storage(settings)),
        config=OrchestratorConfig(
            duplicate_check_scope_project=settings.duplicate_check_scope_project
        ),
    )
