"""Reconciliation engine: rebuild a statement's transaction list until it balances.

Public API:
    - :func:`build_context`
    - :func:`diagnose`
    - :func:`reconcile`

Flow for one request:

1. Compute the discrepancy ``(opening + Σreceived − Σpaid) − closing`` over
   the current lines. Zero means nothing to do (no oracle call).
2. Derive deterministic hints from the discrepancy (direction, candidate
   spurious rows, sign swaps, digit transpositions) for the prompt.
3. One oracle call with the source document attached; the oracle returns a
   complete corrected list plus an explanation.
4. Re-validate every returned row and recompute the discrepancy over the
   corrected list. Only an exact (cent) match is reported as reconciled.

Failures are returned as outcomes on :class:`ReconciliationResult`, never
raised; :meth:`ReconciliationResult.raise_for_outcome` converts them for
callers that prefer exceptions.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping, Sequence
from datetime import date
from decimal import Decimal
from typing import Any

from . import prompting
from .accumulator import ZERO, compute_discrepancy, to_money
from .errors import OracleUnavailable, ReconciliationOutcome, SchemaMismatch
from .logging_setup import get_logger
from .models import (
    CENT,
    ReconciliationChanges,
    ReconciliationContext,
    ReconciliationResult,
    SourceDocument,
    StatementLine,
    TransactionRow,
)
from .normalizer import is_summary_row, parse_statement_cells
from .oracle import Oracle, OracleRequest

_logger = get_logger("ledger_recon.reconciliation")

_TOLERANCE = Decimal("0.005")


def build_context(
    opening_balance: Decimal | float | int | str,
    closing_balance: Decimal | float | int | str,
    transactions: Sequence[StatementLine | TransactionRow],
) -> ReconciliationContext:
    """Build a :class:`ReconciliationContext` with its discrepancy computed."""

    lines = tuple(
        t if isinstance(t, StatementLine) else StatementLine.from_row(t) for t in transactions
    )
    opening = to_money(opening_balance)
    closing = to_money(closing_balance)
    return ReconciliationContext(
        opening_balance=opening,
        closing_balance=closing,
        current_transactions=lines,
        discrepancy_amount=compute_discrepancy(opening, closing, lines),
    )


# ---------------------------------------------------------------------------
# Deterministic diagnostics
# ---------------------------------------------------------------------------


def _describe(idx: int, line: StatementLine) -> str:
    if line.amount_paid:
        amount = f"debit {line.amount_paid:.2f}"
    elif line.amount_received:
        amount = f"credit {line.amount_received:.2f}"
    else:
        amount = "no amount"
    return f"row {idx + 1} ({line.date} {line.description!r}, {amount})"


def _amount(line: StatementLine) -> Decimal:
    return line.amount_paid or line.amount_received or ZERO


def _adjacent_swaps(amount: Decimal) -> set[Decimal]:
    digits = f"{amount:.2f}".replace(".", "")
    out: set[Decimal] = set()
    for i in range(len(digits) - 1):
        if digits[i] == digits[i + 1]:
            continue
        swapped = digits[:i] + digits[i + 1] + digits[i] + digits[i + 2 :]
        out.add(Decimal(int(swapped)).scaleb(-2).quantize(CENT))
    return out


def diagnose(context: ReconciliationContext) -> list[str]:
    """Human-readable hints about where the discrepancy probably comes from."""

    d = context.discrepancy_amount
    if d == 0:
        return ["The transactions already balance."]
    magnitude = abs(d)
    lines = context.current_transactions
    hints: list[str] = []

    if d > 0:
        hints.append(
            f"The computed closing balance is {magnitude:.2f} too HIGH: look for a missing "
            "debit, an overstated credit, or a debit recorded as a credit."
        )
    else:
        hints.append(
            f"The computed closing balance is {magnitude:.2f} too LOW: look for a missing "
            "credit, an overstated debit, or a credit recorded as a debit."
        )

    for i, line in enumerate(lines):
        if is_summary_row(line.description):
            hints.append(f"{_describe(i, line)} looks like a summary row, not a transaction.")

    for i, line in enumerate(lines):
        if _amount(line) == magnitude:
            hints.append(
                f"{_describe(i, line)} equals the discrepancy: it may be spurious, "
                "duplicated, or belong on the other side."
            )

    if (magnitude / 2).quantize(CENT) * 2 == magnitude:
        half = magnitude / 2
        for i, line in enumerate(lines):
            # A debit booked as a credit overstates the balance by twice its amount.
            wrong_side = line.amount_received if d > 0 else line.amount_paid
            if wrong_side is not None and wrong_side == half:
                hints.append(
                    f"{_describe(i, line)} is half the discrepancy: its debit/credit side may "
                    "be swapped."
                )

    if (magnitude / CENT) % 9 == 0:
        for i, line in enumerate(lines):
            amount = _amount(line)
            if amount and any(abs(amount - s) == magnitude for s in _adjacent_swaps(amount)):
                hints.append(
                    f"{_describe(i, line)} may have two adjacent digits transposed "
                    "(the discrepancy is a multiple of 0.09)."
                )

    seen: Counter[tuple[str, str, Decimal | None, Decimal | None]] = Counter(
        (ln.date, ln.description, ln.amount_paid, ln.amount_received) for ln in lines
    )
    for key, count in seen.items():
        if count > 1:
            hints.append(f"{key[0]} {key[1]!r} appears {count} times: check for a duplicate.")

    if len(hints) == 1:
        hints.append(
            f"No single row explains the difference; a transaction of {magnitude:.2f} may be "
            "missing, or several rows may be wrong."
        )
    return hints


# ---------------------------------------------------------------------------
# Oracle output validation
# ---------------------------------------------------------------------------


def _cells_of(raw: Any, idx: int) -> list[Any]:
    if isinstance(raw, Mapping):
        return [
            raw.get("date"),
            raw.get("description"),
            raw.get("amountPaid"),
            raw.get("amountReceived"),
        ]
    if isinstance(raw, list):
        # A trailing balance column, if any, is dropped here.
        return list(raw[:4])
    raise SchemaMismatch(f"correctedTransactions[{idx}] must be an object or an array")


def parse_corrected(raw_rows: Any) -> tuple[list[StatementLine], int]:
    """Validate the oracle's corrected rows.

    Returns ``(lines, dropped)`` where ``dropped`` counts rows with no amount.
    Raises :class:`SchemaMismatch` when the list is absent or any row cannot
    be coerced (bad amount, both amounts set).
    """

    if raw_rows is None:
        raise SchemaMismatch("oracle returned no correctedTransactions list")
    if not isinstance(raw_rows, list):
        raise SchemaMismatch("correctedTransactions must be an array")
    lines: list[StatementLine] = []
    dropped = 0
    for i, raw in enumerate(raw_rows):
        cells = _cells_of(raw, i)
        if any(c is not None and not isinstance(c, (str, int, float)) for c in cells):
            raise SchemaMismatch(f"correctedTransactions[{i}] has non-scalar cells")
        try:
            line = parse_statement_cells(cells)
        except ValueError as e:
            raise SchemaMismatch(f"correctedTransactions[{i}]: {e}") from e
        if not line.amount_paid and not line.amount_received:
            dropped += 1
            continue
        lines.append(line)
    return lines, dropped


def diff_lines(
    current: Sequence[StatementLine], corrected: Sequence[StatementLine]
) -> ReconciliationChanges:
    """Multiset difference: lines only in ``corrected`` are added, only in ``current`` removed."""

    before = Counter(current)
    after = Counter(corrected)
    added = tuple((after - before).elements())
    removed = tuple((before - after).elements())
    return ReconciliationChanges(added=added, removed=removed)


def _iso_dates(lines: Sequence[StatementLine]) -> list[date]:
    out: list[date] = []
    for line in lines:
        try:
            out.append(date.fromisoformat(line.date))
        except ValueError:
            continue
    return out


def coverage_warnings(
    current: Sequence[StatementLine], corrected: Sequence[StatementLine]
) -> list[str]:
    """Warn when the corrected set does not span the current set's statement period."""

    warnings: list[str] = []
    if current and not corrected:
        warnings.append("corrected transaction list is empty")
        return warnings
    cur = _iso_dates(current)
    new = _iso_dates(corrected)
    if cur and new:
        if min(new) > min(cur):
            warnings.append(
                f"corrected transactions start {min(new).isoformat()}, after the first current "
                f"transaction on {min(cur).isoformat()}"
            )
        if max(new) < max(cur):
            warnings.append(
                f"corrected transactions end {max(new).isoformat()}, before the last current "
                f"transaction on {max(cur).isoformat()}"
            )
    if len(corrected) < len(current) // 2:
        warnings.append(
            f"corrected set has {len(corrected)} rows against {len(current)} current rows"
        )
    return warnings


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _failed(
    outcome: ReconciliationOutcome, context: ReconciliationContext, message: str
) -> ReconciliationResult:
    _logger.error(
        "reconcile:failed outcome=%s discrepancy=%s message=%s",
        outcome.value,
        context.discrepancy_amount,
        message,
    )
    return ReconciliationResult(
        outcome=outcome,
        corrected_transactions=[],
        explanation="",
        discrepancy=None,
        message=message,
    )


def reconcile(
    context: ReconciliationContext,
    source_document: SourceDocument | None,
    ocr_text: str | None = None,
    *,
    oracle: Oracle,
) -> ReconciliationResult:
    """Repair ``context.current_transactions`` against the source document.

    ``discrepancy`` on the result is recomputed over the corrected lines; it is
    zero exactly when ``outcome`` is ``reconciled``.
    """

    current = list(context.current_transactions)
    if abs(context.discrepancy_amount) < _TOLERANCE:
        _logger.info("reconcile:skipped reason=balanced rows=%d", len(current))
        return ReconciliationResult(
            outcome=ReconciliationOutcome.RECONCILED,
            corrected_transactions=current,
            explanation="The transactions already balance; no changes were needed.",
            discrepancy=ZERO,
        )
    if source_document is None and not (ocr_text and ocr_text.strip()):
        raise ValueError("reconcile requires a source document or OCR text")

    _logger.info(
        "reconcile:start discrepancy=%s rows=%d", context.discrepancy_amount, len(current)
    )
    request = OracleRequest(
        task="reconcile",
        instructions=prompting.build_reconcile_instructions(),
        user_content=prompting.build_reconcile_content(
            context, diagnostics=diagnose(context), ocr_text=ocr_text
        ),
        response_format=prompting.build_reconcile_response_format(),
        document=source_document,
    )
    try:
        body = oracle(request)
    except OracleUnavailable as e:
        return _failed(ReconciliationOutcome.ORACLE_UNAVAILABLE, context, str(e))
    except SchemaMismatch as e:
        return _failed(ReconciliationOutcome.SCHEMA_MISMATCH, context, str(e))

    try:
        corrected, dropped = parse_corrected(body.get("correctedTransactions"))
        explanation = body.get("explanation")
        if not isinstance(explanation, str) or not explanation.strip():
            raise SchemaMismatch("oracle returned corrected transactions without an explanation")
        if current and not corrected:
            raise SchemaMismatch("oracle returned an empty corrected transaction list")
    except SchemaMismatch as e:
        return _failed(ReconciliationOutcome.SCHEMA_MISMATCH, context, str(e))

    remaining = compute_discrepancy(context.opening_balance, context.closing_balance, corrected)
    changes = diff_lines(current, corrected)
    warnings = coverage_warnings(current, corrected)
    if dropped:
        warnings.append(f"dropped {dropped} corrected row(s) without an amount")

    if abs(remaining) < _TOLERANCE:
        outcome = ReconciliationOutcome.RECONCILED
        message = None
    else:
        outcome = ReconciliationOutcome.UNRESOLVED
        message = f"corrected transactions are still off by {remaining:.2f}"

    _logger.info(
        "reconcile:done outcome=%s discrepancy=%s rows=%d added=%d removed=%d warnings=%d",
        outcome.value,
        remaining,
        len(corrected),
        len(changes.added),
        len(changes.removed),
        len(warnings),
    )
    return ReconciliationResult(
        outcome=outcome,
        corrected_transactions=corrected,
        explanation=explanation.strip(),
        discrepancy=remaining,
        message=message,
        changes=changes,
        warnings=tuple(warnings),
    )


__all__ = [
    "build_context",
    "coverage_warnings",
    "diagnose",
    "diff_lines",
    "parse_corrected",
    "reconcile",
]
