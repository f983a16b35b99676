"""Public interface for the ``ledger_recon`` package.

Bank-statement extraction, transaction categorization and balance
reconciliation around a language-model oracle. This module only re-exports
the stable import surface; no runtime logic lives here.
"""

from .accumulator import AccountNature, accumulate, balances_by, sum_signed, with_running_balance
from .api import categorize, default_oracle, extract_document, reconcile_statement
from .categorization import categorize_open_ended, categorize_transactions
from .errors import (
    LedgerReconError,
    OracleUnavailable,
    ReconciliationOutcome,
    ReconciliationUnresolved,
    SchemaMismatch,
    VocabularyViolation,
)
from .extraction import extract_pages, extract_table
from .models import (
    CategorizationResult,
    CreatedAt,
    DocumentType,
    ExtractionResult,
    HistoricalReferenceItem,
    ReconciliationContext,
    ReconciliationResult,
    SourceDocument,
    StatementLine,
    TransactionRow,
)
from .normalizer import normalize_table, to_transaction_rows
from .oracle import OpenAIOracle, Oracle, OracleRequest
from .reconciliation import build_context, reconcile
from .reference_matching import match_by_reference
from .settings import Settings

__all__ = [
    # API
    "categorize",
    "default_oracle",
    "extract_document",
    "reconcile_statement",
    # Stages
    "accumulate",
    "balances_by",
    "build_context",
    "categorize_open_ended",
    "categorize_transactions",
    "extract_pages",
    "extract_table",
    "match_by_reference",
    "normalize_table",
    "reconcile",
    "sum_signed",
    "to_transaction_rows",
    "with_running_balance",
    # Models
    "AccountNature",
    "CategorizationResult",
    "CreatedAt",
    "DocumentType",
    "ExtractionResult",
    "HistoricalReferenceItem",
    "ReconciliationContext",
    "ReconciliationResult",
    "SourceDocument",
    "StatementLine",
    "TransactionRow",
    # Oracle and settings
    "OpenAIOracle",
    "Oracle",
    "OracleRequest",
    "Settings",
    # Errors
    "LedgerReconError",
    "OracleUnavailable",
    "ReconciliationOutcome",
    "ReconciliationUnresolved",
    "SchemaMismatch",
    "VocabularyViolation",
]
