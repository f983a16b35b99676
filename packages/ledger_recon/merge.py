"""Per-row merge discipline for categorization results.

Every merged row is rebuilt from a full copy of the original record; only
``vendor``, ``glAccount`` and ``confidenceScore`` are overlaid. ``bankName``,
``date``, amounts, ``id`` and ``userId`` always come from the original, so an
oracle that drops or rewrites them has no effect.

``createdAt`` follows its own rule (see :func:`resolve_created_at`).
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

from .models import UNCATEGORIZED, CreatedAt, TransactionRow

MISSING: Any = object()


def _placeholder_or(value: str | None) -> str:
    if value is None or not value.strip():
        return UNCATEGORIZED
    return value


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def repair_created_at(candidate: Any) -> CreatedAt | None:
    """Repair a ``createdAt`` value from an oracle patch.

    ``{"seconds": s}`` or ``{"nanoseconds": n}`` get the missing part as ``0``.
    Returns ``None`` when nothing usable is present.
    """

    if isinstance(candidate, CreatedAt):
        return candidate
    if not isinstance(candidate, Mapping):
        return None
    seconds = _as_int(candidate.get("seconds"))
    nanos = _as_int(candidate.get("nanoseconds"))
    if seconds is None and nanos is None:
        return None
    if ("seconds" in candidate and seconds is None) or (
        "nanoseconds" in candidate and nanos is None
    ):
        return None
    return CreatedAt(seconds=seconds or 0, nanoseconds=nanos or 0)


def resolve_created_at(candidate: Any, original: TransactionRow) -> tuple[bool, CreatedAt | None]:
    """Decide the merged ``createdAt`` as ``(present, value)``.

    - The original's value, when it has one, is carried over.
    - Otherwise a repairable patch value is used (missing sub-field → ``0``).
    - Otherwise the original's state (absent or explicit null) is kept.
    """

    if original.created_at is not None:
        return True, original.created_at
    repaired = None if candidate is MISSING else repair_created_at(candidate)
    if repaired is not None:
        return True, repaired
    return original.has_created_at, None


def clamp_confidence(value: Any) -> float | None:
    """Return ``value`` as a float in [0, 1], or ``None`` if it is not numeric."""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    f = float(value)
    if math.isnan(f):
        return None
    return min(1.0, max(0.0, f))


def merge_patch(
    original: TransactionRow,
    *,
    vendor: str | None,
    gl_account: str | None,
    confidence: float | None,
    created_at: Any = MISSING,
) -> TransactionRow:
    """Overlay categorization fields onto a full copy of ``original``.

    ``None`` for ``vendor``/``gl_account`` keeps the original value (or
    ``"-"``). ``confidence=None`` leaves the original score untouched.
    """

    record: dict[str, Any] = original.to_record()
    record["vendor"] = _placeholder_or(vendor if vendor is not None else original.vendor)
    record["glAccount"] = _placeholder_or(
        gl_account if gl_account is not None else original.gl_account
    )
    if confidence is not None:
        record["confidenceScore"] = confidence

    present, value = resolve_created_at(created_at, original)
    record.pop("createdAt", None)
    if present:
        record["createdAt"] = value.model_dump() if value is not None else None
    return TransactionRow.from_record(record)


def fallback_row(original: TransactionRow) -> TransactionRow:
    """Defined output for a row whose suggestion was absent, malformed or rejected."""

    return merge_patch(original, vendor=None, gl_account=None, confidence=0.0)


__all__ = [
    "MISSING",
    "clamp_confidence",
    "fallback_row",
    "merge_patch",
    "repair_created_at",
    "resolve_created_at",
]
