"""Pydantic schemas for the Playwright report shapes found in uploaded archives.

All models ignore unknown fields: Playwright adds keys between releases and
a new key must never make an otherwise valid report unreadable. Fields whose
presence changes control flow (``error`` vs ``errors``, flat specs vs
``spec.tests``) are modelled explicitly as optionals.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def coerce_timestamp(value: Any) -> Any:
    """Turn epoch-millisecond timestamps into ISO-8601 strings."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        moment = datetime.fromtimestamp(value / 1000, tz=UTC)
        return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return value


class PermissiveModel(BaseModel):
    """Base model: camelCase aliases, unknown keys discarded."""

    model_config = ConfigDict(
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class AnnotationPayload(PermissiveModel):
    """Test annotation such as ``{"type": "tag", "description": "@smoke"}``."""

    type: str
    description: str | None = None


class LocationPayload(PermissiveModel):
    file: str
    line: int = 0
    column: int = 0


class ErrorPayload(PermissiveModel):
    """Error object as emitted by the JSON reporter."""

    message: str = ""
    stack: str | None = None
    value: str | None = None

    @property
    def text(self) -> str:
        return self.message or self.value or ""


class AttachmentPayload(PermissiveModel):
    name: str = "Attachment"
    content_type: str | None = None
    path: str | None = None
    body: str | None = None

    @property
    def is_image(self) -> bool:
        return bool(self.content_type and self.content_type.startswith("image/"))


class StepPayload(PermissiveModel):
    """Execution step; steps nest arbitrarily deep."""

    title: str = "Unknown step"
    category: str | None = None
    start_time: str | None = None
    duration: float = 0
    error: ErrorPayload | str | None = None
    steps: list[StepPayload] = Field(default_factory=list)

    coerce_start_time = field_validator("start_time", mode="before")(coerce_timestamp)

    @field_validator("steps", mode="before")
    @classmethod
    def _drop_malformed_steps(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    @property
    def error_text(self) -> str | None:
        if self.error is None:
            return None
        if isinstance(self.error, str):
            return self.error
        return self.error.text or None


class ResultPayload(PermissiveModel):
    """One attempt (``results[]`` entry) of a test."""

    worker_index: int | None = None
    status: str = "failed"
    duration: float = 0
    error: ErrorPayload | None = None
    errors: list[ErrorPayload | str] = Field(default_factory=list)
    attachments: list[AttachmentPayload] = Field(default_factory=list)
    retry: int | None = None
    start_time: str | None = None
    steps: list[StepPayload] | None = None

    coerce_start_time = field_validator("start_time", mode="before")(coerce_timestamp)

    @field_validator("steps", mode="before")
    @classmethod
    def _tolerate_step_formats(cls, value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, list):
            return None
        return [item for item in value if isinstance(item, dict)]

    @property
    def error_message(self) -> str | None:
        """First error message, preferring the ``errors`` array."""
        if self.errors:
            first = self.errors[0]
            return first if isinstance(first, str) else first.text
        if self.error is not None:
            return self.error.text
        return None

    @property
    def error_stack(self) -> str | None:
        """All errors joined, or the single error's stack."""
        if self.errors:
            parts = [e if isinstance(e, str) else (e.stack or e.text) for e in self.errors]
            return "\n\n".join(parts)
        if self.error is not None:
            return self.error.stack
        return None


class FragmentTestPayload(PermissiveModel):
    """A test with its attempts, as found in HTML report fragments."""

    test_id: str
    title: str
    project_name: str = ""
    location: LocationPayload | None = None
    outcome: str
    duration: float = 0
    annotations: list[AnnotationPayload] = Field(default_factory=list)
    results: list[ResultPayload] = Field(default_factory=list)


class FragmentPayload(PermissiveModel):
    """Per-file document inside the HTML report's embedded archive.

    ``tests`` is kept raw so each entry can be validated on its own.
    """

    file_id: str | None = None
    file_name: str | None = None
    tests: list[dict[str, Any]]


class SpecTestPayload(PermissiveModel):
    """``spec.tests[]`` entry of the JSON reporter (one per project)."""

    project_id: str | None = None
    project_name: str = ""
    status: str | None = None
    expected_status: str | None = None
    annotations: list[AnnotationPayload] = Field(default_factory=list)
    results: list[ResultPayload] = Field(default_factory=list)


class SpecPayload(PermissiveModel):
    """Spec in a full report.

    Either flat (``testId``/``outcome``/``results`` on the spec itself) or
    the JSON reporter layout with nested ``tests``.
    """

    title: str
    id: str | None = None
    test_id: str | None = None
    file: str | None = None
    line: int = 0
    column: int = 0
    location: LocationPayload | None = None
    project_name: str = ""
    outcome: str | None = None
    annotations: list[AnnotationPayload] = Field(default_factory=list)
    results: list[ResultPayload] | None = None
    tests: list[SpecTestPayload] = Field(default_factory=list)


class SuitePayload(PermissiveModel):
    """Suite node; ``specs`` are validated individually by the decoder."""

    title: str = ""
    file: str | None = None
    line: int = 0
    column: int = 0
    specs: list[dict[str, Any]] = Field(default_factory=list)
    suites: list[SuitePayload] = Field(default_factory=list)


class FullReportPayload(PermissiveModel):
    """Top-level JSON reporter document."""

    config: dict[str, Any] = Field(default_factory=dict)
    suites: list[SuitePayload]
    stats: dict[str, Any] | None = None
