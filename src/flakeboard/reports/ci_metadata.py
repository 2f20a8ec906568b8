"""Infer branch, commit and environment from CI metadata embedded in reports.

Nothing here fails: missing or odd metadata simply leaves the
caller-supplied values in place.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from flakeboard.core.models import CIOverrides

UNKNOWN = "unknown"
MAX_BRANCH_LENGTH = 60

ENVIRONMENT_ALIASES: dict[str, str] = {
    "preview": "development",
    "dev": "development",
    "prod": "production",
    "stage": "staging",
    "test": "testing",
}

# Checked in order, first non-empty value wins
BRANCH_KEYS = (
    "GITHUB_HEAD_REF",  # GitHub pull request source branch
    "GITHUB_REF_NAME",  # GitHub branch or tag
    "BRANCH",
    "GIT_BRANCH",
    "CI_COMMIT_BRANCH",  # GitLab
)

TICKET_KEY_PATTERN = re.compile(r"^([A-Z]+-\d+)")
PULL_REQUEST_HREF_PATTERN = re.compile(r"/pull/(\d+)$")
UNSAFE_BRANCH_CHARS = re.compile(r"[^a-zA-Z0-9\-_/]")


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def sanitize_branch(branch: str) -> str:
    """Replace unsafe characters with ``-`` and cap the length."""
    sanitized = UNSAFE_BRANCH_CHARS.sub("-", branch)
    if len(sanitized) > MAX_BRANCH_LENGTH:
        return sanitized[:MAX_BRANCH_LENGTH] + "..."
    return sanitized


def detect_branch(ci_metadata: Mapping[str, Any]) -> str | None:
    """Find a branch name in CI metadata.

    Falls back to a ticket key at the start of the PR title
    (``"WS-2938: Fix login"`` -> ``"WS-2938"``), then to ``pr-<number>``
    from the PR URL.
    """
    for key in BRANCH_KEYS:
        value = _text(ci_metadata.get(key))
        if value:
            return value

    pr_title = _text(ci_metadata.get("prTitle"))
    if pr_title:
        ticket = TICKET_KEY_PATTERN.match(pr_title)
        if ticket:
            return ticket.group(1)

    pr_href = _text(ci_metadata.get("prHref"))
    if pr_href:
        pull = PULL_REQUEST_HREF_PATTERN.search(pr_href)
        if pull:
            return f"pr-{pull.group(1)}"

    return None


def extract_branch_from_ci(
    ci_metadata: Mapping[str, Any] | None, fallback_branch: str = UNKNOWN
) -> str:
    """Resolve the branch for a run.

    An explicit caller-supplied branch (anything but ``"unknown"``) is
    respected; otherwise the CI metadata is consulted.
    """
    if fallback_branch and fallback_branch != UNKNOWN:
        return sanitize_branch(fallback_branch)

    detected = detect_branch(ci_metadata) if ci_metadata else None
    return sanitize_branch(detected) if detected else fallback_branch


def extract_commit_from_ci(
    ci_metadata: Mapping[str, Any] | None, fallback_commit: str = UNKNOWN
) -> str:
    """Use ``commitHash`` from CI metadata when the caller did not supply a commit."""
    if fallback_commit and fallback_commit != UNKNOWN:
        return fallback_commit
    detected = _text(ci_metadata.get("commitHash")) if ci_metadata else None
    return detected or fallback_commit


def normalize_environment(environment: str) -> str:
    """Map environment aliases (case-insensitive) to canonical names."""
    return ENVIRONMENT_ALIASES.get(environment.lower(), environment)


def resolve_ci_overrides(
    ci_metadata: Mapping[str, Any] | None,
    branch: str = UNKNOWN,
    environment: str = "",
    commit: str = UNKNOWN,
) -> CIOverrides:
    """Apply CI metadata and environment aliases to caller-supplied labels."""
    return CIOverrides(
        branch=extract_branch_from_ci(ci_metadata, branch),
        environment=normalize_environment(environment),
        commit=extract_commit_from_ci(ci_metadata, commit),
    )
