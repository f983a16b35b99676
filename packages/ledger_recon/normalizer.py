"""Row Normalizer: raw extracted rows → canonical ``extractedTable``.

Input is the table an extraction oracle produced for one document type
(cells may be strings, numbers or missing; the first row may be the oracle's
own header). Output is an :class:`~ledger_recon.models.ExtractionResult` whose
first row is the exact contract header for the document type and whose cells
are all strings.

Rules applied here:

- summary/total/"balance brought forward" rows never pass through;
- bank statement rows carry at most one non-zero amount (offenders are
  excluded and counted in the diagnostic);
- a ``Balance`` column survives only if some row actually carries a balance;
- dates become ``YYYY-MM-DD`` (statement year used for year-less dates);
- amounts become plain number strings (``"1234.50"``).

No table is not an error: the result is an empty table plus a message.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from .logging_setup import get_logger
from .models import (
    CENT,
    DocumentType,
    ExtractionResult,
    StatementLine,
    TransactionRow,
)

_logger = get_logger("ledger_recon.normalizer")

HEADERS: dict[DocumentType, list[str]] = {
    DocumentType.BANK_STATEMENT: ["Date", "Description", "Amount Paid", "Amount Received"],
    DocumentType.CREDIT_CARD: ["Transaction Date", "Description", "Amount"],
    DocumentType.VENDOR_BILL: [
        "Date",
        "Vendor Name",
        "Customer Name",
        "Bill Number",
        "Description",
        "Unit Price",
        "Quantity",
        "Amount",
        "Total GST",
        "Total Amount",
    ],
    DocumentType.CHECK: ["Date", "Check Number", "Payee", "Payer", "Amount", "Memo/Narration"],
}
BALANCE_HEADER = "Balance"

_VENDOR_BILL_NUMERIC = frozenset({5, 6, 7, 8, 9})

_SUMMARY_RE = re.compile(
    r"""
    ^\s*(sub\s*-?\s*)?totals?\s*(:|$)
    | \btotal\s+(debits?|credits?|deposits?|withdrawals?|payments?|purchases?|fees|interest
                 |charges|amount|due|gst|tax)\b
    | \bbalance\s+(brought|carried)\s+(forward|fwd|down)\b
    | \b(opening|closing|beginning|ending|previous|new|statement|available|ledger)\s+balance\b
    | ^\s*(b/f|c/f|bal(ance)?\s+fwd)\b
    | \bminimum\s+(payment|amount)\s+due\b
    | \bpayment\s+due\s+date\b
    | \bcredit\s+limit\b
    """,
    re.IGNORECASE | re.VERBOSE,
)

_DATED_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%m-%d-%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%d-%b-%Y",
    "%d-%b-%y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
)
_YEARLESS_FORMATS: tuple[str, ...] = (
    "%m/%d",
    "%m-%d",
    "%d %b",
    "%d %B",
    "%d-%b",
    "%b %d",
    "%B %d",
)


# ---------------------------------------------------------------------------
# Cell helpers
# ---------------------------------------------------------------------------


def coerce_cell(value: Any) -> str:
    """Stringify one cell: ``None`` → ``""``, numbers without float artefacts."""

    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float):
        d = Decimal(repr(value))
        return format(d.normalize(), "f") if d == d.to_integral_value() else format(d, "f")
    return str(value).strip()


def parse_amount(raw: str | None) -> Decimal | None:
    """Parse a printed amount into a signed ``Decimal``; blank or ``-`` → ``None``.

    Understands currency symbols, thousands separators, ``+``/``-`` signs,
    surrounding parentheses and trailing ``CR``/``DR`` markers (``CR`` is
    negative). Raises ``ValueError`` on anything else.
    """

    if raw is None:
        return None
    s = raw.strip()
    if not s or s in {"-", "--"}:
        return None
    negative = False
    upper = s.upper()
    if upper.endswith("CR"):
        negative = True
        s = s[:-2].rstrip()
    elif upper.endswith("DR"):
        s = s[:-2].rstrip()

    # Strip sign, currency and parentheses in any order until stable.
    while True:
        changed = False
        if s.startswith("+"):
            s = s[1:].lstrip()
            changed = True
        elif s.startswith("-"):
            negative = True
            s = s[1:].lstrip()
            changed = True
        if s[:1] in {"$", "£", "€", "₹"}:
            s = s[1:].lstrip()
            changed = True
        if len(s) >= 2 and s.startswith("(") and s.endswith(")"):
            negative = True
            s = s[1:-1].strip()
            changed = True
        if s.endswith("-") and len(s) > 1:
            negative = True
            s = s[:-1].rstrip()
            changed = True
        if not changed:
            break

    s = s.replace(",", "").replace(" ", "")
    try:
        d = Decimal(s)
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {raw!r}") from exc
    if not d.is_finite():
        raise ValueError(f"invalid amount: {raw!r}")
    return -abs(d) if negative else d


def fmt_amount(d: Decimal | None) -> str:
    if d is None:
        return ""
    return f"{d.quantize(CENT, rounding=ROUND_HALF_UP):.2f}"


def canonical_date(raw: str, statement_year: str | None = None) -> str:
    """Return ``YYYY-MM-DD`` when ``raw`` parses; otherwise ``raw`` unchanged."""

    s = " ".join(raw.replace(".", " ").split()) if raw else ""
    if not s:
        return ""
    s = s.split("T", 1)[0] if re.match(r"^\d{4}-\d{2}-\d{2}T", s) else s
    for fmt in _DATED_FORMATS:
        try:
            return datetime.strptime(s, fmt).date().isoformat()
        except ValueError:
            continue
    if statement_year and statement_year.strip().isdigit():
        year = statement_year.strip()
        for fmt in _YEARLESS_FORMATS:
            try:
                # Append the year before parsing so 29 Feb validates against it.
                return datetime.strptime(f"{s} {year}", f"{fmt} %Y").date().isoformat()
            except ValueError:
                continue
    return raw.strip()


def is_summary_row(description: str) -> bool:
    return bool(_SUMMARY_RE.search(description or ""))


def _pad(cells: Sequence[str], width: int) -> list[str]:
    out = list(cells[:width])
    out.extend([""] * (width - len(out)))
    return out


def _looks_like_header(cells: Sequence[str], header: Sequence[str]) -> bool:
    if not cells:
        return False
    n = min(len(cells), len(header))
    return all(cells[i].strip().casefold() == header[i].casefold() for i in range(n))


def _finish(
    header: list[str], rows: list[list[str]], notes: list[str], document_type: DocumentType
) -> ExtractionResult:
    message = "; ".join(notes) if notes else None
    if not rows:
        empty_note = f"No {document_type.value} transactions could be identified"
        message = f"{empty_note}; {message}" if message else empty_note
        _logger.info("normalize:empty document_type=%s", document_type.value)
        return ExtractionResult(table=[], message=message)
    _logger.info(
        "normalize:done document_type=%s rows=%d notes=%d",
        document_type.value,
        len(rows),
        len(notes),
    )
    return ExtractionResult(table=[header, *rows], message=message)


# ---------------------------------------------------------------------------
# Per-document normalizers
# ---------------------------------------------------------------------------


def parse_statement_cells(
    cells: Sequence[str], statement_year: str | None = None
) -> StatementLine:
    """Build a :class:`StatementLine` from ``[date, description, paid, received, ...]``.

    Extra trailing cells (a running balance) are ignored. A negative paid
    amount counts as paid; a negative received amount is a debit and moves to
    the paid side. Raises ``ValueError`` for unparseable amounts or when both
    sides are non-zero.
    """

    date, description, paid_raw, received_raw = _pad([coerce_cell(c) for c in cells], 4)
    paid = parse_amount(paid_raw)
    received = parse_amount(received_raw)
    if received is not None and received < 0 and not paid:
        paid, received = -received, None
    paid = abs(paid) if paid else None
    received = abs(received) if received else None
    return StatementLine(
        date=canonical_date(date, statement_year),
        description=description,
        amount_paid=paid.quantize(CENT) if paid is not None else None,
        amount_received=received.quantize(CENT) if received is not None else None,
    )


def _normalize_bank_statement(
    rows: list[list[str]], statement_year: str | None, notes: list[str]
) -> tuple[list[str], list[list[str]]]:
    header = list(HEADERS[DocumentType.BANK_STATEMENT])
    has_balance_col = False
    if rows and _looks_like_header(rows[0], header):
        has_balance_col = len(rows[0]) > 4 and rows[0][4].strip().casefold() == "balance"
        rows = rows[1:]
    elif any(len(r) >= 5 for r in rows):
        has_balance_col = True

    out: list[list[str]] = []
    skipped_summary = skipped_both = skipped_bad = 0
    for cells in rows:
        cells = _pad(cells, 5)
        if not cells[0] and not cells[1]:
            skipped_summary += 1
            continue
        if is_summary_row(cells[1]):
            skipped_summary += 1
            continue
        try:
            line = parse_statement_cells(cells[:4], statement_year)
        except ValueError as e:
            if "both amounts" in str(e):
                skipped_both += 1
            else:
                skipped_bad += 1
            continue
        if not line.amount_paid and not line.amount_received:
            skipped_summary += 1
            continue
        row = line.to_cells()
        if has_balance_col:
            try:
                row.append(fmt_amount(parse_amount(cells[4])))
            except ValueError:
                row.append(cells[4])
        out.append(row)

    if has_balance_col and any(r[4] for r in out):
        header.append(BALANCE_HEADER)
    else:
        out = [r[:4] for r in out]
    if skipped_summary:
        notes.append(f"excluded {skipped_summary} non-transaction row(s)")
    if skipped_both:
        notes.append(f"excluded {skipped_both} row(s) with both Amount Paid and Amount Received")
    if skipped_bad:
        notes.append(f"excluded {skipped_bad} row(s) with unreadable amounts")
    return header, out


def _normalize_credit_card(
    rows: list[list[str]], statement_year: str | None, notes: list[str]
) -> tuple[list[str], list[list[str]]]:
    header = list(HEADERS[DocumentType.CREDIT_CARD])
    if rows and _looks_like_header(rows[0], header):
        rows = rows[1:]
    out: list[list[str]] = []
    skipped = 0
    for cells in rows:
        date, description, amount_raw = _pad(cells, 3)
        if is_summary_row(description) or (not date and not description):
            skipped += 1
            continue
        try:
            amount = parse_amount(amount_raw)
        except ValueError:
            amount = None
        if amount is None:
            skipped += 1
            continue
        out.append([canonical_date(date, statement_year), description, fmt_amount(amount)])
    if skipped:
        notes.append(f"excluded {skipped} non-transaction row(s)")
    return header, out


def _normalize_vendor_bill(
    rows: list[list[str]], statement_year: str | None, notes: list[str]
) -> tuple[list[str], list[list[str]]]:
    header = list(HEADERS[DocumentType.VENDOR_BILL])
    if rows and _looks_like_header(rows[0], header):
        rows = rows[1:]
    out: list[list[str]] = []
    skipped = 0
    for cells in rows:
        cells = _pad(cells, len(header))
        if is_summary_row(cells[4]) or not any(cells):
            skipped += 1
            continue
        cells[0] = canonical_date(cells[0], statement_year)
        for i in _VENDOR_BILL_NUMERIC:
            try:
                d = parse_amount(cells[i])
            except ValueError:
                continue
            if d is not None:
                # Quantity keeps its own precision; money goes to cents.
                cells[i] = format(d.normalize(), "f") if i == 6 else fmt_amount(d)
        out.append(cells)
    if skipped:
        notes.append(f"excluded {skipped} summary row(s)")
    return header, out


def _normalize_check(
    rows: list[list[str]], statement_year: str | None, notes: list[str]
) -> tuple[list[str], list[list[str]]]:
    header = list(HEADERS[DocumentType.CHECK])
    if rows and _looks_like_header(rows[0], header):
        rows = rows[1:]
    data = [_pad(r, len(header)) for r in rows if any(r)]
    if len(data) > 1:
        notes.append(f"cheque had {len(data)} data rows; kept the first")
    out: list[list[str]] = []
    for cells in data[:1]:
        cells[0] = canonical_date(cells[0], statement_year)
        try:
            d = parse_amount(cells[4])
        except ValueError:
            d = None
        if d is not None:
            cells[4] = fmt_amount(abs(d))
        out.append(cells)
    return header, out


_NORMALIZERS: dict[
    DocumentType,
    Callable[[list[list[str]], str | None, list[str]], tuple[list[str], list[list[str]]]],
] = {
    DocumentType.BANK_STATEMENT: _normalize_bank_statement,
    DocumentType.CREDIT_CARD: _normalize_credit_card,
    DocumentType.VENDOR_BILL: _normalize_vendor_bill,
    DocumentType.CHECK: _normalize_check,
}


def normalize_table(
    raw_rows: Sequence[Sequence[Any]],
    document_type: DocumentType | str,
    *,
    statement_year: str | None = None,
    message: str | None = None,
) -> ExtractionResult:
    """Normalize raw extracted rows into the document type's canonical table.

    ``message`` (typically the oracle's own note) is kept at the front of the
    resulting diagnostic.
    """

    try:
        doc_type = DocumentType(document_type)
    except ValueError:
        return ExtractionResult(table=[], message="Unsupported document type provided.")

    rows: list[list[str]] = [
        [coerce_cell(c) for c in r]
        for r in raw_rows
        if isinstance(r, (list, tuple))
    ]
    notes: list[str] = [message] if message else []
    if len(rows) != len(raw_rows):
        notes.append(f"ignored {len(raw_rows) - len(rows)} malformed row(s)")
    header, out = _NORMALIZERS[doc_type](rows, statement_year, notes)
    return _finish(header, out, notes, doc_type)


# ---------------------------------------------------------------------------
# Table → ledger values
# ---------------------------------------------------------------------------


def to_statement_lines(table: Sequence[Sequence[str]]) -> list[StatementLine]:
    """Parse a normalized bank-statement table (header first) into lines."""

    return [parse_statement_cells(r[:4]) for r in table[1:]]


def _new_id() -> str:
    return uuid.uuid4().hex


def to_transaction_rows(
    table: Sequence[Sequence[str]],
    *,
    bank_name: str,
    id_factory: Callable[[], str] = _new_id,
    user_id: str | None = None,
) -> list[TransactionRow]:
    """Ingest a normalized bank-statement table as uncategorized ledger rows.

    Ids are generated here, once; no later stage regenerates them.
    """

    rows: list[TransactionRow] = []
    for line in to_statement_lines(table):
        rows.append(
            TransactionRow(
                id=id_factory(),
                bank_name=bank_name,
                date=line.date,
                description=line.description,
                amount_paid=float(line.amount_paid) if line.amount_paid is not None else None,
                amount_received=(
                    float(line.amount_received) if line.amount_received is not None else None
                ),
                user_id=user_id,
            )
        )
    return rows


__all__ = [
    "BALANCE_HEADER",
    "HEADERS",
    "canonical_date",
    "coerce_cell",
    "fmt_amount",
    "is_summary_row",
    "normalize_table",
    "parse_amount",
    "parse_statement_cells",
    "to_statement_lines",
    "to_transaction_rows",
]
