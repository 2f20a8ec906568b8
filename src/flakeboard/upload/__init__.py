"""Upload pipeline: materialization, record assembly and orchestration."""

from .factory import build_orchestrator
from .materializer import AttachmentMaterializer, find_last_failed_step
from .orchestrator import (
    OrchestratorConfig,
    OutcomeKind,
    UploadOrchestrator,
    UploadOutcome,
    UploadParams,
    UploadState,
)

__all__ = [
    "AttachmentMaterializer",
    "OrchestratorConfig",
    "OutcomeKind",
    "UploadOrchestrator",
    "UploadOutcome",
    "UploadParams",
    "UploadState",
    "build_orchestrator",
    "find_last_failed_step",
]
