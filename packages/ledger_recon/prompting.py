"""Prompt construction, deterministic serialization, and strict response formats.

This module builds, for each oracle-assisted stage:

- system instructions and user content (transactions embedded as JSON between
  ``BEGIN_*`` / ``END_*`` markers with a fixed field order);
- the strict ``text.format`` JSON-schema object for the OpenAI Responses API.

Nothing here calls the oracle or validates its output.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

from .models import (
    DocumentType,
    HistoricalReferenceItem,
    ReconciliationContext,
    StatementLine,
    TransactionRow,
)
from .normalizer import HEADERS

TRANSACTION_FIELD_ORDER: tuple[str, ...] = (
    "id",
    "date",
    "description",
    "bankName",
    "vendor",
    "glAccount",
    "amountPaid",
    "amountReceived",
    "createdAt",
)

BEGIN_TRANSACTIONS = "BEGIN_TRANSACTIONS_JSON\n"
END_TRANSACTIONS = "\nEND_TRANSACTIONS_JSON"
BEGIN_REFERENCE = "BEGIN_REFERENCE_JSON\n"
END_REFERENCE = "\nEND_REFERENCE_JSON"
BEGIN_GL_ACCOUNTS = "BEGIN_GL_ACCOUNTS_JSON\n"
END_GL_ACCOUNTS = "\nEND_GL_ACCOUNTS_JSON"


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def serialize_transactions_to_json(rows: Sequence[TransactionRow]) -> str:
    """Serialize ledger rows with the fixed :data:`TRANSACTION_FIELD_ORDER`."""

    arr: list[dict[str, Any]] = []
    for row in rows:
        record = row.to_record()
        arr.append({key: record.get(key) for key in TRANSACTION_FIELD_ORDER})
    return json.dumps(arr, ensure_ascii=False)


def serialize_reference_to_json(items: Sequence[HistoricalReferenceItem]) -> str:
    return json.dumps(
        [
            {
                "keyword": i.keyword,
                "vendorCustomerName": i.vendor_customer_name,
                "glAccount": i.gl_account,
            }
            for i in items
        ],
        ensure_ascii=False,
    )


def serialize_lines_to_json(lines: Sequence[StatementLine]) -> str:
    return json.dumps([line.to_cells() for line in lines], ensure_ascii=False)


def _fmt_money(d: Decimal) -> str:
    return f"{d:.2f}"


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

_EXTRACTION_RULES: dict[DocumentType, str] = {
    DocumentType.BANK_STATEMENT: (
        "Bank statement:\n"
        '- Header: {header}; append "Balance" ONLY if the source shows a running balance '
        "column. Never invent a balance.\n"
        "- Debits go into Amount Paid, credits into Amount Received. A row has at most one "
        "non-zero amount.\n"
        "- Only actual transactions. Exclude totals, summaries, 'balance brought forward' and "
        "any other non-transactional text. Ignore pages that only show images of cheques."
    ),
    DocumentType.CREDIT_CARD: (
        "Credit card statement:\n"
        "- Header: {header}.\n"
        "- Use the transaction date, not the post date, when both are present.\n"
        "- Purchases and debits are POSITIVE; payments and credits are NEGATIVE.\n"
        "- Only actual transactions. Exclude summary boxes, interest summaries and payment "
        "information."
    ),
    DocumentType.VENDOR_BILL: (
        "Vendor bill:\n"
        "- Header: {header}.\n"
        "- One row per line item. Date, Vendor Name, Customer Name and Bill Number repeat on "
        "every row; Total GST and Total Amount are bill-level and repeat on every row."
    ),
    DocumentType.CHECK: (
        "Cheque:\n"
        "- Header: {header}.\n"
        "- Exactly one data row for the single cheque. Leave unreadable fields empty; do not "
        "guess. The Amount must be exact."
    ),
}


def _rules_for(document_type: DocumentType) -> str:
    header = json.dumps(HEADERS[document_type])
    return _EXTRACTION_RULES[document_type].format(header=header)


def build_extraction_instructions() -> str:
    return (
        "You are an expert financial document processor. Convert the main table of the "
        "document into rows of strings with HIGH ACCURACY. The first row is the header. "
        "Dates are YYYY-MM-DD. If no table can be found, return an empty table and a message "
        "explaining why. Output JSON only that conforms to the specified schema."
    )


def build_extraction_content(
    document_type: DocumentType,
    *,
    statement_year: str | None = None,
    ocr_text: str | None = None,
) -> str:
    """User content for a document page, or for OCR text when no document is sent."""

    lines: list[str] = [f"Document type: {document_type.value}", "", _rules_for(document_type)]
    if statement_year:
        lines += [
            "",
            f"Statement year: {statement_year}. Use it for every date, especially dates "
            "printed without a year.",
        ]
    if ocr_text is not None:
        lines += [
            "",
            "The document is provided as raw OCR text (it may be messy):",
            "BEGIN_OCR_TEXT",
            ocr_text,
            "END_OCR_TEXT",
        ]
    return "\n".join(lines)


def build_extraction_response_format() -> dict[str, Any]:
    return {
        "type": "json_schema",
        "name": "extracted_table",
        "schema": {
            "type": "object",
            "properties": {
                "extractedTable": {
                    "type": "array",
                    "items": {"type": "array", "items": {"type": "string"}},
                },
                "message": {"type": ["string", "null"]},
            },
            "required": ["extractedTable", "message"],
            "additionalProperties": False,
        },
        "strict": True,
    }


# ---------------------------------------------------------------------------
# Reference matching
# ---------------------------------------------------------------------------


def build_reference_match_instructions() -> str:
    return (
        "You match bank transaction descriptions to a user's historical reference keywords. "
        "Matching is fuzzy and semantic (e.g. 'AMZN Mktp US' matches 'Amazon Marketplace'), "
        "not exact substring. Report a similarity between 0 and 1 for every plausible match. "
        "Never invent keywords, vendors or GL accounts. Output JSON only per the schema."
    )


def build_reference_match_content(
    transactions: Sequence[TransactionRow],
    reference_data: Sequence[HistoricalReferenceItem],
) -> str:
    return (
        "For each transaction, compare its description with every reference keyword. For each "
        "clearly related keyword emit one match with the transaction id, the keyword exactly as "
        "given, its vendorCustomerName as vendor, its glAccount, your similarity score, and the "
        "transaction's createdAt copied unchanged (seconds and nanoseconds) or null. Omit "
        "transactions with no related keyword; generic descriptions should not match.\n\n"
        + BEGIN_TRANSACTIONS
        + serialize_transactions_to_json(transactions)
        + END_TRANSACTIONS
        + "\n\n"
        + BEGIN_REFERENCE
        + serialize_reference_to_json(reference_data)
        + END_REFERENCE
    )


def build_reference_match_response_format() -> dict[str, Any]:
    return {
        "type": "json_schema",
        "name": "reference_matches",
        "schema": {
            "type": "object",
            "properties": {
                "matches": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {"type": "string"},
                            "keyword": {"type": "string"},
                            "vendor": {"type": "string"},
                            "glAccount": {"type": "string"},
                            "similarity": {"type": "number", "minimum": 0, "maximum": 1},
                            "createdAt": {
                                "type": ["object", "null"],
                                "properties": {
                                    "seconds": {"type": "integer"},
                                    "nanoseconds": {"type": "integer"},
                                },
                                "required": ["seconds", "nanoseconds"],
                                "additionalProperties": False,
                            },
                        },
                        "required": [
                            "id",
                            "keyword",
                            "vendor",
                            "glAccount",
                            "similarity",
                            "createdAt",
                        ],
                        "additionalProperties": False,
                    },
                }
            },
            "required": ["matches"],
            "additionalProperties": False,
        },
        "strict": True,
    }


# ---------------------------------------------------------------------------
# Open-ended categorization
# ---------------------------------------------------------------------------


def build_categorize_instructions() -> str:
    return (
        "You are an expert bookkeeper categorizing bank transactions. For EVERY transaction id "
        "infer a vendor and choose a GL account ONLY from the provided list. Never invent GL "
        "accounts. Output JSON only per the schema."
    )


def build_categorize_content(
    transactions: Sequence[TransactionRow], available_gl_accounts: Sequence[str]
) -> str:
    return (
        "Rules:\n"
        "- Return exactly one suggestion per transaction id; copy the id exactly.\n"
        "- suggestedVendor: the vendor inferred from the description; if you cannot infer one, "
        "use the transaction's current vendor, otherwise \"-\".\n"
        "- suggestedGlAccount: one entry of the GL account list. If none fits, use the "
        "transaction's current glAccount, otherwise \"-\".\n"
        "- confidenceScore: 0.0 (none) to 1.0 (certain); keep it at 0.2 or below when you "
        "fell back to current values or placeholders.\n\n"
        + BEGIN_TRANSACTIONS
        + serialize_transactions_to_json(transactions)
        + END_TRANSACTIONS
        + "\n\n"
        + BEGIN_GL_ACCOUNTS
        + json.dumps(list(available_gl_accounts), ensure_ascii=False)
        + END_GL_ACCOUNTS
    )


def build_categorize_response_format(available_gl_accounts: Sequence[str]) -> dict[str, Any]:
    accounts = [a for a in dict.fromkeys(s.strip() for s in available_gl_accounts) if a]
    if not accounts:
        raise ValueError("available_gl_accounts must contain at least one non-blank entry")
    return {
        "type": "json_schema",
        "name": "gl_categorization",
        "schema": {
            "type": "object",
            "properties": {
                "suggestions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {"type": "string"},
                            "suggestedVendor": {"type": "string"},
                            "suggestedGlAccount": {"type": "string", "enum": [*accounts, "-"]},
                            "confidenceScore": {"type": "number", "minimum": 0, "maximum": 1},
                        },
                        "required": [
                            "id",
                            "suggestedVendor",
                            "suggestedGlAccount",
                            "confidenceScore",
                        ],
                        "additionalProperties": False,
                    },
                }
            },
            "required": ["suggestions"],
            "additionalProperties": False,
        },
        "strict": True,
    }


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


def build_reconcile_instructions() -> str:
    return (
        "You are an expert reconciliation analyst. The attached statement is the source of "
        "truth; the extracted transaction table is wrong in at least one way (missing "
        "transaction, wrong amount, debit/credit swapped, or a summary row included as a "
        "transaction). Rebuild the COMPLETE transaction list for the entire statement period "
        "so that opening balance + credits - debits equals the closing balance exactly. Never "
        "drop valid transactions to force the arithmetic. Output JSON only per the schema."
    )


def build_reconcile_content(
    context: ReconciliationContext,
    *,
    diagnostics: Sequence[str],
    ocr_text: str | None = None,
) -> str:
    lines: list[str] = [
        f"Opening balance: {_fmt_money(context.opening_balance)}",
        f"Expected closing balance: {_fmt_money(context.closing_balance)}",
        f"Discrepancy to resolve (computed closing - statement closing): "
        f"{_fmt_money(context.discrepancy_amount)}",
        "",
        "Analysis hints:",
        *[f"- {d}" for d in diagnostics],
        "",
        "Steps: compare the table line by line with the statement; look for a missing "
        "transaction, an amount that differs, a debit recorded as a credit (or the reverse), "
        "or a summary row such as 'Total Debits'. Then rebuild the table from the statement.",
        "",
        "Output rules:",
        "- correctedTransactions holds ONLY date (YYYY-MM-DD), description, amountPaid, "
        "amountReceived. Do NOT include a balance column; it is recomputed.",
        "- Amounts are plain number strings (e.g. \"123.45\"); use \"\" for the empty side.",
        "- explanation names each change, e.g. 'Added missing debit of $50.00 on 2023-08-15 "
        "for AMZN Mktp'.",
        "",
        "Current (incorrect) table, columns [Date, Description, Amount Paid, Amount Received]:",
        BEGIN_TRANSACTIONS.rstrip("\n"),
        serialize_lines_to_json(context.current_transactions),
        END_TRANSACTIONS.lstrip("\n"),
    ]
    if ocr_text:
        lines += [
            "",
            "Reference OCR text of the statement:",
            "BEGIN_OCR_TEXT",
            ocr_text,
            "END_OCR_TEXT",
        ]
    return "\n".join(lines)


def build_reconcile_response_format() -> dict[str, Any]:
    return {
        "type": "json_schema",
        "name": "reconciled_statement",
        "schema": {
            "type": "object",
            "properties": {
                "correctedTransactions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "date": {"type": "string"},
                            "description": {"type": "string"},
                            "amountPaid": {"type": "string"},
                            "amountReceived": {"type": "string"},
                        },
                        "required": ["date", "description", "amountPaid", "amountReceived"],
                        "additionalProperties": False,
                    },
                },
                "explanation": {"type": "string"},
            },
            "required": ["correctedTransactions", "explanation"],
            "additionalProperties": False,
        },
        "strict": True,
    }
