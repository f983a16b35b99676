"""Error taxonomy for the reconciliation/normalization pipeline.

Components convert failures at their boundary into typed results; these
exceptions exist for the oracle layer (which raises them) and for callers that
prefer exceptions over inspecting result objects (see
:meth:`ledger_recon.models.ReconciliationResult.raise_for_outcome`).

``ExtractionEmpty`` is not an exception: an empty table plus a
diagnostic message is a valid terminal state of extraction.
"""

from __future__ import annotations

from decimal import Decimal
from enum import StrEnum


class LedgerReconError(Exception):
    """Base class for all errors raised by ``ledger_recon``."""


class OracleUnavailable(LedgerReconError):
    """Transport failure, timeout, or non-2xx status from the language-model oracle."""


class SchemaMismatch(LedgerReconError):
    """Oracle responded, but the output is missing required keys or has wrong types."""


class ReconciliationUnresolved(LedgerReconError):
    """The corrected transaction set still does not balance to the cent."""

    def __init__(self, message: str, *, discrepancy: Decimal) -> None:
        super().__init__(message)
        self.discrepancy = discrepancy


class VocabularyViolation(LedgerReconError):
    """A GL account outside the caller-supplied vocabulary.

    Raised by :func:`ledger_recon.categorization.canonical_gl_account`; the
    categorization merger catches it and downgrades the suggestion.
    """

    def __init__(self, gl_account: str) -> None:
        super().__init__(f"GL account not in vocabulary: {gl_account!r}")
        self.gl_account = gl_account


class ReconciliationOutcome(StrEnum):
    RECONCILED = "reconciled"
    UNRESOLVED = "unresolved"
    ORACLE_UNAVAILABLE = "oracle_unavailable"
    SCHEMA_MISMATCH = "schema_mismatch"


__all__ = [
    "LedgerReconError",
    "OracleUnavailable",
    "ReconciliationOutcome",
    "ReconciliationUnresolved",
    "SchemaMismatch",
    "VocabularyViolation",
]
