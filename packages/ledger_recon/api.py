"""Service-level entry points for request handlers.

Each function wires the default :class:`~ledger_recon.oracle.OpenAIOracle`
(configured from :class:`~ledger_recon.settings.Settings`) unless an oracle is
passed in, then delegates to the stage modules. Ledger rows may be given as
:class:`~ledger_recon.models.TransactionRow` instances or as persisted records
(camelCase mappings).
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import Any

from .categorization import categorize_transactions
from .extraction import extract_pages, extract_table
from .models import (
    CategorizationResult,
    DocumentType,
    ExtractionResult,
    HistoricalReferenceItem,
    ReconciliationResult,
    SourceDocument,
    StatementLine,
    TransactionRow,
)
from .oracle import OpenAIOracle, Oracle
from .reconciliation import build_context, reconcile
from .settings import Settings


def default_oracle(settings: Settings | None = None) -> Oracle:
    return OpenAIOracle(settings or Settings.from_env())


def _rows(items: Sequence[TransactionRow | Mapping[str, Any]]) -> list[TransactionRow]:
    return [t if isinstance(t, TransactionRow) else TransactionRow.from_record(t) for t in items]


def _references(
    items: Sequence[HistoricalReferenceItem | Mapping[str, Any]],
) -> list[HistoricalReferenceItem]:
    return [
        i if isinstance(i, HistoricalReferenceItem) else HistoricalReferenceItem.model_validate(i)
        for i in items
    ]


def extract_document(
    pages: SourceDocument | Sequence[SourceDocument] | None,
    document_type: DocumentType | str,
    *,
    ocr_text: str | None = None,
    statement_year: str | None = None,
    oracle: Oracle | None = None,
    settings: Settings | None = None,
) -> ExtractionResult:
    """Extract the canonical table from one document, a list of pages, or OCR text."""

    settings = settings or Settings.from_env()
    oracle = oracle or default_oracle(settings)
    if pages is None or isinstance(pages, SourceDocument):
        return extract_table(
            pages, document_type, oracle, ocr_text=ocr_text, statement_year=statement_year
        )
    if len(pages) == 1:
        return extract_table(
            pages[0], document_type, oracle, ocr_text=ocr_text, statement_year=statement_year
        )
    return extract_pages(
        pages,
        document_type,
        oracle,
        statement_year=statement_year,
        concurrency=settings.page_concurrency,
    )


def categorize(
    transactions: Sequence[TransactionRow | Mapping[str, Any]],
    *,
    reference_data: Sequence[HistoricalReferenceItem | Mapping[str, Any]] = (),
    available_gl_accounts: Sequence[str] = (),
    reference_scorer: str = "lexical",
    oracle: Oracle | None = None,
    settings: Settings | None = None,
) -> CategorizationResult:
    """Categorize rows: reference matching first, then the GL vocabulary."""

    settings = settings or Settings.from_env()
    needs_oracle = bool(available_gl_accounts) or (
        reference_scorer == "oracle" and bool(reference_data)
    )
    if oracle is None and needs_oracle:
        oracle = default_oracle(settings)
    return categorize_transactions(
        _rows(transactions),
        reference_data=_references(reference_data),
        available_gl_accounts=available_gl_accounts,
        oracle=oracle,
        reference_scorer=reference_scorer,
        match_threshold=settings.match_threshold,
        ambiguity_margin=settings.ambiguity_margin,
    )


def reconcile_statement(
    opening_balance: Decimal | float | int | str,
    closing_balance: Decimal | float | int | str,
    transactions: Sequence[StatementLine | TransactionRow],
    source_document: SourceDocument | None,
    ocr_text: str | None = None,
    *,
    oracle: Oracle | None = None,
    settings: Settings | None = None,
) -> ReconciliationResult:
    """Build the reconciliation context and repair it against the source document."""

    context = build_context(opening_balance, closing_balance, transactions)
    return reconcile(
        context, source_document, ocr_text, oracle=oracle or default_oracle(settings)
    )


__all__ = [
    "categorize",
    "default_oracle",
    "extract_document",
    "reconcile_statement",
]
