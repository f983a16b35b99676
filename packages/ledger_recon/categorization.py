"""Open-ended GL categorization and the categorization precedence pipeline.

Public API:
    - :func:`categorize_open_ended`
    - :func:`categorize_transactions`

Open-ended categorization asks the oracle for one suggestion per transaction
id. Every suggestion is re-validated here; the response schema sent to the
oracle is never assumed to have been honored:

- ``suggestedGlAccount`` must match the caller's vocabulary after trimming and
  casefolding (the vocabulary's own spelling is stored). Anything else keeps
  the row's existing GL account (or ``"-"``) with confidence ``0.0``.
- A missing, duplicated or malformed suggestion gives the row its fallback
  values; unknown ids are ignored.
- If the call itself fails, every row falls back and the result carries
  ``failure``.

The output always contains every input row exactly once, in input order.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from . import prompting
from .errors import OracleUnavailable, SchemaMismatch, VocabularyViolation
from .logging_setup import get_logger
from .merge import clamp_confidence, fallback_row, merge_patch
from .models import CategorizationResult, HistoricalReferenceItem, TransactionRow
from .oracle import Oracle, OracleRequest
from .reference_matching import (
    DEFAULT_AMBIGUITY_MARGIN,
    DEFAULT_MATCH_THRESHOLD,
    match_by_reference,
)

_logger = get_logger("ledger_recon.categorization")


def _vocab_key(value: str) -> str:
    return value.strip().casefold()


def build_vocabulary(available_gl_accounts: Sequence[str]) -> dict[str, str]:
    """Map normalized key → canonical spelling; blanks dropped, first spelling wins."""

    vocab: dict[str, str] = {}
    for account in available_gl_accounts:
        if not isinstance(account, str) or not account.strip():
            continue
        vocab.setdefault(_vocab_key(account), account.strip())
    return vocab


class _Suggestion(BaseModel):
    """Typed view of one open-ended suggestion (strict: no str/number coercion)."""

    model_config = ConfigDict(extra="ignore", strict=True)

    id: str
    suggestedVendor: str
    suggestedGlAccount: str
    confidenceScore: float

    @field_validator("id")
    @classmethod
    def _strip_id(cls, v: str) -> str:
        return v.strip()


def _parse_suggestions(body: Mapping[str, Any], ids: set[str]) -> dict[str, _Suggestion]:
    items = body.get("suggestions")
    if not isinstance(items, list):
        raise SchemaMismatch("categorization response is missing a 'suggestions' array")

    by_id: dict[str, _Suggestion] = {}
    malformed = unknown = duplicates = 0
    for raw in items:
        try:
            s = _Suggestion.model_validate(raw)
        except ValidationError:
            malformed += 1
            continue
        if s.id not in ids:
            unknown += 1
            continue
        if s.id in by_id:
            duplicates += 1
            continue
        by_id[s.id] = s
    if malformed or unknown or duplicates:
        _logger.warning(
            "categorize:invalid_suggestions malformed=%d unknown_ids=%d duplicates=%d",
            malformed,
            unknown,
            duplicates,
        )
    return by_id


def canonical_gl_account(vocab: Mapping[str, str], suggested: str) -> str:
    """Return the vocabulary's spelling of ``suggested`` or raise :class:`VocabularyViolation`."""

    canonical = vocab.get(_vocab_key(suggested))
    if canonical is None:
        raise VocabularyViolation(suggested)
    return canonical


def _apply_suggestion(
    row: TransactionRow, s: _Suggestion | None, vocab: Mapping[str, str]
) -> tuple[TransactionRow, bool]:
    if s is None:
        return fallback_row(row), False
    confidence = clamp_confidence(s.confidenceScore)
    if confidence is None:
        return fallback_row(row), False
    vendor = s.suggestedVendor.strip() or None
    try:
        canonical = canonical_gl_account(vocab, s.suggestedGlAccount)
    except VocabularyViolation as e:
        _logger.debug("categorize:vocabulary_violation id=%s gl_account=%r", row.id, e.gl_account)
        # Keep the row's own account, zero confidence.
        return merge_patch(row, vendor=vendor, gl_account=None, confidence=0.0), False
    return merge_patch(row, vendor=vendor, gl_account=canonical, confidence=confidence), True


def categorize_open_ended(
    transactions: Sequence[TransactionRow],
    available_gl_accounts: Sequence[str],
    oracle: Oracle,
) -> CategorizationResult:
    """Suggest vendor and GL account for every row from a fixed vocabulary."""

    rows = list(transactions)
    vocab = build_vocabulary(available_gl_accounts)
    if not rows or not vocab:
        if rows:
            _logger.info("categorize:skipped reason=empty_vocabulary rows=%d", len(rows))
        return CategorizationResult(transactions=[fallback_row(r) for r in rows])

    request = OracleRequest(
        task="categorize",
        instructions=prompting.build_categorize_instructions(),
        user_content=prompting.build_categorize_content(rows, list(vocab.values())),
        response_format=prompting.build_categorize_response_format(list(vocab.values())),
    )
    try:
        suggestions = _parse_suggestions(oracle(request), {r.id for r in rows})
    except (OracleUnavailable, SchemaMismatch) as e:
        _logger.error("categorize:failed rows=%d error=%s", len(rows), e)
        return CategorizationResult(
            transactions=[fallback_row(r) for r in rows], failure=str(e)
        )

    out: list[TransactionRow] = []
    categorized: set[str] = set()
    for row in rows:
        merged, ok = _apply_suggestion(row, suggestions.get(row.id), vocab)
        out.append(merged)
        if ok:
            categorized.add(row.id)

    _logger.info(
        "categorize:done rows=%d categorized=%d fallback=%d",
        len(rows),
        len(categorized),
        len(rows) - len(categorized),
    )
    return CategorizationResult(transactions=out, categorized_ids=frozenset(categorized))


def categorize_transactions(
    transactions: Sequence[TransactionRow],
    *,
    reference_data: Sequence[HistoricalReferenceItem] = (),
    available_gl_accounts: Sequence[str] = (),
    oracle: Oracle | None = None,
    reference_scorer: str = "lexical",
    match_threshold: float = DEFAULT_MATCH_THRESHOLD,
    ambiguity_margin: float = DEFAULT_AMBIGUITY_MARGIN,
) -> CategorizationResult:
    """Run reference matching, then open-ended categorization on what is left.

    Only rows needing categorization (``vendor`` or ``glAccount`` empty or
    ``"-"``) are considered; other rows pass through unchanged. When a
    vocabulary is given, a reference match whose GL account is outside it is
    not accepted and the row goes on to open-ended categorization.
    ``reference_scorer`` is ``"lexical"`` or ``"oracle"``.
    """

    if reference_scorer not in ("lexical", "oracle"):
        raise ValueError(f"unknown reference_scorer: {reference_scorer!r}")
    vocab = build_vocabulary(available_gl_accounts)
    if vocab and oracle is None:
        raise ValueError("open-ended categorization requires an oracle")
    if reference_scorer == "oracle" and reference_data and oracle is None:
        raise ValueError("oracle-scored reference matching requires an oracle")

    rows = list(transactions)
    pending = [r for r in rows if r.is_uncategorized]
    updated: dict[str, TransactionRow] = {}
    categorized: set[str] = set()
    failures: list[str] = []

    ref = match_by_reference(
        pending,
        reference_data,
        oracle=oracle if reference_scorer == "oracle" else None,
        match_threshold=match_threshold,
        ambiguity_margin=ambiguity_margin,
    )
    if ref.failure:
        failures.append(f"reference matching: {ref.failure}")
    for row in ref.effectively_categorized:
        if vocab and _vocab_key(row.gl_account) not in vocab:
            continue
        updated[row.id] = row
        categorized.add(row.id)

    remaining = [r for r in pending if r.id not in categorized]
    if vocab and remaining and oracle is not None:
        open_ended = categorize_open_ended(remaining, list(vocab.values()), oracle)
        if open_ended.failure:
            failures.append(f"open-ended categorization: {open_ended.failure}")
        for row in open_ended.transactions:
            updated[row.id] = row
        categorized |= open_ended.categorized_ids

    result = CategorizationResult(
        transactions=[updated.get(r.id, r) for r in rows],
        categorized_ids=frozenset(categorized),
        failure="; ".join(failures) if failures else None,
    )
    _logger.info(
        "categorize_transactions:done rows=%d pending=%d by_reference=%d categorized=%d",
        len(rows),
        len(pending),
        len(ref.categorized_ids),
        len(categorized),
    )
    return result


__all__ = [
    "build_vocabulary",
    "canonical_gl_account",
    "categorize_open_ended",
    "categorize_transactions",
]
