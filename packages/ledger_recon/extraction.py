"""Document → ``extractedTable`` via the oracle, then the row normalizer.

Public API:
    - :func:`extract_table` (one document or one page)
    - :func:`extract_pages` (multi-page documents, pages in parallel)

Extraction never raises for oracle problems: an unavailable oracle or an
unusable response yields an empty table with a message so the caller can
prompt for manual entry.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from . import prompting
from .concurrency import p_map
from .errors import OracleUnavailable, SchemaMismatch
from .logging_setup import get_logger
from .models import DocumentType, ExtractionResult, SourceDocument
from .normalizer import HEADERS, normalize_table
from .oracle import Oracle, OracleRequest

_logger = get_logger("ledger_recon.extraction")

_DEFAULT_PAGE_CONCURRENCY = 4


def _raw_rows(decoded: Mapping[str, Any]) -> tuple[list[Any], str | None]:
    table = decoded.get("extractedTable")
    if table is None:
        table = []
    if not isinstance(table, list):
        raise SchemaMismatch("extractedTable must be an array of rows")
    message = decoded.get("message")
    return table, message if isinstance(message, str) and message.strip() else None


def extract_table(
    document: SourceDocument | None,
    document_type: DocumentType | str,
    oracle: Oracle,
    *,
    ocr_text: str | None = None,
    statement_year: str | None = None,
) -> ExtractionResult:
    """Extract and normalize the main table of ``document``.

    The document itself is preferred; ``ocr_text`` is used only when no
    document is supplied.
    """

    try:
        doc_type = DocumentType(document_type)
    except ValueError:
        return ExtractionResult(table=[], message="Unsupported document type provided.")

    has_ocr = bool(ocr_text and ocr_text.strip())
    if document is None and not has_ocr:
        return ExtractionResult(
            table=[], message="No document or OCR text was provided for extraction."
        )

    request = OracleRequest(
        task="extract",
        instructions=prompting.build_extraction_instructions(),
        user_content=prompting.build_extraction_content(
            doc_type,
            statement_year=statement_year,
            ocr_text=None if document is not None else ocr_text,
        ),
        response_format=prompting.build_extraction_response_format(),
        document=document,
    )
    try:
        decoded = oracle(request)
        raw, message = _raw_rows(decoded)
    except OracleUnavailable as e:
        _logger.warning("extract:oracle_unavailable document_type=%s error=%s", doc_type.value, e)
        return ExtractionResult(table=[], message=f"Extraction service unavailable: {e}")
    except SchemaMismatch as e:
        _logger.warning("extract:schema_mismatch document_type=%s error=%s", doc_type.value, e)
        return ExtractionResult(table=[], message=f"Extraction output was unusable: {e}")

    return normalize_table(raw, doc_type, statement_year=statement_year, message=message)


def extract_pages(
    pages: Sequence[SourceDocument],
    document_type: DocumentType | str,
    oracle: Oracle,
    *,
    statement_year: str | None = None,
    concurrency: int = _DEFAULT_PAGE_CONCURRENCY,
) -> ExtractionResult:
    """Extract every page concurrently and merge the tables under one header.

    Page order is preserved. Messages from pages that produced no rows are
    combined into the result's message.
    """

    try:
        doc_type = DocumentType(document_type)
    except ValueError:
        return ExtractionResult(table=[], message="Unsupported document type provided.")
    if not pages:
        return ExtractionResult(table=[], message="No pages were provided for extraction.")

    def _one(page: SourceDocument) -> ExtractionResult:
        return extract_table(page, doc_type, oracle, statement_year=statement_year)

    results = p_map(pages, _one, concurrency=min(concurrency, len(pages)))
    return merge_page_results(results, doc_type)


def merge_page_results(
    results: Sequence[ExtractionResult], document_type: DocumentType
) -> ExtractionResult:
    """Concatenate per-page tables; a Balance column is kept only if every page has one."""

    base = list(HEADERS[document_type])
    with_rows = [r for r in results if not r.is_empty]
    widest = max((len(r.header) for r in with_rows), default=len(base))
    keep_extra = bool(with_rows) and all(len(r.header) == widest for r in with_rows)
    header = with_rows[0].header if keep_extra and with_rows else base

    rows: list[list[str]] = []
    for r in with_rows:
        rows.extend(row[: len(header)] for row in r.rows)

    notes = [
        f"page {i + 1}: {r.message}" for i, r in enumerate(results) if r.message
    ]
    _logger.info(
        "extract_pages:done pages=%d pages_with_rows=%d rows=%d",
        len(results),
        len(with_rows),
        len(rows),
    )
    message = "; ".join(notes) if notes else None
    if not rows:
        return ExtractionResult(table=[], message=message or "No transactions found on any page.")
    return ExtractionResult(table=[list(header), *rows], message=message)


__all__ = ["extract_pages", "extract_table", "merge_page_results"]
