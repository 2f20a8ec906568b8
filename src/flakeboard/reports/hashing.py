"""Content fingerprint used to detect duplicate uploads.

The hash covers test outcomes and timings only. Labels chosen by the
uploader (environment, trigger, branch, commit) are deliberately left out,
so re-uploading the same CI artifact under different labels still
collides.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from typing import Any

from flakeboard.core.models import ExtractedTest


def _sort_key(item: dict[str, Any]) -> tuple[str, str, int, str]:
    # file:name repeats once per browser in multi-project reports
    return (
        f"{item['file']}:{item['name']}",
        item["status"],
        item["duration"],
        item.get("started_at", ""),
    )


def build_hash_projection(tests: Iterable[ExtractedTest]) -> list[dict[str, Any]]:
    """Project tests onto the hashed fields, ordered by ``file:name``.

    Ties are broken by status, duration and start time. Sorting compares
    code points, so the order does not depend on locale.
    """
    projection = []
    for test in tests:
        item: dict[str, Any] = {
            "name": test.name,
            "file": test.file,
            "status": test.status.value,
            "duration": test.duration,
        }
        # Absent start times are omitted rather than serialized as null
        if test.started_at is not None:
            item["started_at"] = test.started_at
        projection.append(item)
    return sorted(projection, key=_sort_key)


def canonical_payload(tests: Iterable[ExtractedTest]) -> str:
    """Deterministic compact JSON serialization of the hash projection."""
    return json.dumps(
        {"tests": build_hash_projection(tests)},
        separators=(",", ":"),
        ensure_ascii=False,
    )


def calculate_content_hash(tests: Iterable[ExtractedTest]) -> str:
    """SHA-256 of the canonical payload as lowercase hex."""
    return hashlib.sha256(canonical_payload(tests).encode("utf-8")).hexdigest()
