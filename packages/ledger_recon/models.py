"""Data models flowing through the reconciliation/normalization pipeline.

Two families live here:

- Ledger records (:class:`TransactionRow`, :class:`CreatedAt`,
  :class:`HistoricalReferenceItem`) are pydantic models whose aliases are the
  camelCase wire names of the persisted record. They are frozen; stages return
  new instances (``model_copy(update=...)``) instead of mutating.
- Pipeline values (:class:`StatementLine`, :class:`ReconciliationContext` and
  the ``*Result`` types) are frozen dataclasses with ``Decimal`` money.
"""

from __future__ import annotations

import base64
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import (
    OracleUnavailable,
    ReconciliationOutcome,
    ReconciliationUnresolved,
    SchemaMismatch,
)

# Placeholder used by the ledger for "uncategorized" vendor/glAccount values.
UNCATEGORIZED = "-"

CENT = Decimal("0.01")


# ---------------------------------------------------------------------------
# Ledger records (wire contract of the persisted record)
# ---------------------------------------------------------------------------


class CreatedAt(BaseModel):
    """Creation-time marker as a ``(seconds, nanoseconds)`` pair."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    seconds: int
    nanoseconds: int


class TransactionRow(BaseModel):
    """One ledger row in canonical form.

    ``created_at`` distinguishes *absent* (not in ``model_fields_set``) from
    *explicit null* (set to ``None``); :meth:`to_record` preserves the
    difference.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    bank_name: str = Field(alias="bankName")
    date: str
    description: str
    vendor: str = UNCATEGORIZED
    gl_account: str = Field(default=UNCATEGORIZED, alias="glAccount")
    amount_paid: float | None = Field(default=None, alias="amountPaid", ge=0)
    amount_received: float | None = Field(default=None, alias="amountReceived", ge=0)
    confidence_score: float | None = Field(default=None, alias="confidenceScore", ge=0, le=1)
    created_at: CreatedAt | None = Field(default=None, alias="createdAt")
    user_id: str | None = Field(default=None, alias="userId")

    @model_validator(mode="after")
    def _single_amount(self) -> TransactionRow:
        if self.amount_paid and self.amount_received:
            raise ValueError(
                f"row {self.id!r} has both amountPaid and amountReceived populated"
            )
        return self

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> TransactionRow:
        return cls.model_validate(dict(record))

    @property
    def has_created_at(self) -> bool:
        return "created_at" in self.model_fields_set

    @property
    def is_uncategorized(self) -> bool:
        return _is_placeholder(self.vendor) or _is_placeholder(self.gl_account)

    def to_record(self) -> dict[str, Any]:
        """Return the persisted record shape (camelCase keys)."""

        record = self.model_dump(
            by_alias=True, exclude={"created_at", "confidence_score", "user_id"}
        )
        if self.user_id is not None:
            record["userId"] = self.user_id
        if self.confidence_score is not None:
            record["confidenceScore"] = self.confidence_score
        if self.has_created_at:
            record["createdAt"] = self.created_at.model_dump() if self.created_at else None
        return record


class HistoricalReferenceItem(BaseModel):
    """User-curated keyword → vendor/GL account mapping (read-only to the pipeline)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    keyword: str
    vendor_customer_name: str = Field(alias="vendorCustomerName")
    gl_account: str = Field(alias="glAccount")
    id: str | None = None


def _is_placeholder(value: str | None) -> bool:
    return value is None or value.strip() in ("", UNCATEGORIZED)


# ---------------------------------------------------------------------------
# Documents and extraction
# ---------------------------------------------------------------------------


class DocumentType(StrEnum):
    BANK_STATEMENT = "bankStatement"
    CREDIT_CARD = "creditCard"
    VENDOR_BILL = "vendorBill"
    CHECK = "check"


@dataclass(frozen=True, slots=True)
class SourceDocument:
    """Raw document bytes (one page or a whole file) with its MIME type."""

    data: bytes
    mime_type: str
    filename: str | None = None

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    """Extracted table (header first) plus an optional diagnostic message.

    An empty ``table`` is a valid terminal state; callers should surface
    ``message`` (e.g. prompt for manual entry).
    """

    table: list[list[str]]
    message: str | None = None

    @property
    def header(self) -> list[str]:
        return self.table[0] if self.table else []

    @property
    def rows(self) -> list[list[str]]:
        return self.table[1:]

    @property
    def is_empty(self) -> bool:
        return len(self.table) < 2


# ---------------------------------------------------------------------------
# Statement lines and reconciliation
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StatementLine:
    """A 4-column statement row: date, description, amount paid, amount received."""

    date: str
    description: str
    amount_paid: Decimal | None = None
    amount_received: Decimal | None = None

    def __post_init__(self) -> None:
        for name in ("amount_paid", "amount_received"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")
        if self.amount_paid and self.amount_received:
            raise ValueError(
                f"statement line {self.date} {self.description!r} has both amounts populated"
            )

    @classmethod
    def from_row(cls, row: TransactionRow) -> StatementLine:
        return cls(
            date=row.date,
            description=row.description,
            amount_paid=_float_to_decimal(row.amount_paid),
            amount_received=_float_to_decimal(row.amount_received),
        )

    def to_cells(self) -> list[str]:
        return [
            self.date,
            self.description,
            _fmt_cents(self.amount_paid),
            _fmt_cents(self.amount_received),
        ]


def _float_to_decimal(value: float | None) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value)).quantize(CENT)


def _fmt_cents(value: Decimal | None) -> str:
    if value is None or value == 0:
        return ""
    return f"{value.quantize(CENT):.2f}"


@dataclass(frozen=True, slots=True)
class ReconciliationContext:
    """Inputs of one reconciliation request.

    ``discrepancy_amount`` is ``(opening + Σreceived − Σpaid) − closing`` over
    ``current_transactions``; construction rejects a mismatching value. Use
    :func:`ledger_recon.reconciliation.build_context` to compute it.
    """

    opening_balance: Decimal
    closing_balance: Decimal
    current_transactions: tuple[StatementLine, ...]
    discrepancy_amount: Decimal

    def __post_init__(self) -> None:
        from .accumulator import compute_discrepancy

        expected = compute_discrepancy(
            self.opening_balance, self.closing_balance, self.current_transactions
        )
        if expected != self.discrepancy_amount.quantize(CENT):
            raise ValueError(
                f"discrepancy_amount {self.discrepancy_amount} does not match computed {expected}"
            )


@dataclass(frozen=True, slots=True)
class ReconciliationChanges:
    """Multiset difference between the current and corrected statement lines."""

    added: tuple[StatementLine, ...] = ()
    removed: tuple[StatementLine, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.removed

    def summary(self) -> str:
        return f"{len(self.added)} added, {len(self.removed)} removed"


@dataclass(frozen=True, slots=True)
class ReconciliationResult:
    outcome: ReconciliationOutcome
    corrected_transactions: list[StatementLine]
    explanation: str
    discrepancy: Decimal | None
    message: str | None = None
    changes: ReconciliationChanges = field(default_factory=ReconciliationChanges)
    warnings: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.outcome is ReconciliationOutcome.RECONCILED

    def raise_for_outcome(self) -> None:
        """Raise the exception matching a non-success outcome; no-op when reconciled."""

        if self.outcome is ReconciliationOutcome.RECONCILED:
            return
        msg = self.message or self.outcome.value
        if self.outcome is ReconciliationOutcome.UNRESOLVED:
            raise ReconciliationUnresolved(msg, discrepancy=self.discrepancy or Decimal("0"))
        if self.outcome is ReconciliationOutcome.ORACLE_UNAVAILABLE:
            raise OracleUnavailable(msg)
        raise SchemaMismatch(msg)


# ---------------------------------------------------------------------------
# Categorization
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CategorizationResult:
    """Full input list (input order) plus which ids were effectively categorized.

    ``failure`` carries the message of an overall oracle failure; rows are
    still fully defined (fallback values) in that case.
    """

    transactions: list[TransactionRow]
    categorized_ids: frozenset[str] = frozenset()
    failure: str | None = None

    @property
    def untouched_ids(self) -> frozenset[str]:
        return frozenset(t.id for t in self.transactions) - self.categorized_ids

    @property
    def effectively_categorized(self) -> list[TransactionRow]:
        return [t for t in self.transactions if t.id in self.categorized_ids]

    @property
    def counts(self) -> dict[str, int]:
        n_cat = sum(1 for t in self.transactions if t.id in self.categorized_ids)
        return {"categorized": n_cat, "untouched": len(self.transactions) - n_cat}

    def needs_review(self, threshold: float) -> list[str]:
        """Ids whose confidence is present and below ``threshold``."""

        return [
            t.id
            for t in self.transactions
            if t.confidence_score is not None and t.confidence_score < threshold
        ]


__all__ = [
    "CENT",
    "UNCATEGORIZED",
    "CategorizationResult",
    "CreatedAt",
    "DocumentType",
    "ExtractionResult",
    "HistoricalReferenceItem",
    "ReconciliationChanges",
    "ReconciliationContext",
    "ReconciliationResult",
    "SourceDocument",
    "StatementLine",
    "TransactionRow",
]
