"""Reference-data matching: the first categorization strategy.

Each transaction description is compared with the keywords of the user's
historical reference items. A row is categorized only on a strong and
unambiguous match:

- the best candidate's similarity is at least ``match_threshold``; and
- no other candidate with a different ``(vendor, glAccount)`` pair scores
  within ``ambiguity_margin`` of it.

Similarity comes from one of two scorers sharing that rule: a local lexical
scorer (default, no network) or the oracle (one call for the whole batch).
The oracle only ever points at reference items; vendor and GL account values
are always copied from the matched item itself.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Sequence
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from . import prompting
from .errors import OracleUnavailable, SchemaMismatch
from .logging_setup import get_logger
from .merge import MISSING, merge_patch
from .models import CategorizationResult, HistoricalReferenceItem, TransactionRow
from .oracle import Oracle, OracleRequest

_logger = get_logger("ledger_recon.reference_matching")

DEFAULT_MATCH_THRESHOLD = 0.80
DEFAULT_AMBIGUITY_MARGIN = 0.05

_NON_ALNUM = re.compile(r"[^0-9a-z]+")


# ---------------------------------------------------------------------------
# Lexical scorer
# ---------------------------------------------------------------------------


def _tokens(text: str) -> list[str]:
    folded = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode()
    return [t for t in _NON_ALNUM.split(folded.casefold()) if t]


def _token_score(a: str, b: str) -> float:
    if a == b:
        return 1.0
    if min(len(a), len(b)) >= 3 and (a.startswith(b) or b.startswith(a)):
        return 0.9
    if a[0] != b[0]:
        return 0.0
    ratio = SequenceMatcher(None, a, b).ratio()
    return ratio if ratio >= 0.8 else 0.0


def _compact_match(d_tokens: list[str], k_compact: str) -> bool:
    """True when ``k_compact`` spans whole description tokens, possibly run together."""

    joined = "".join(d_tokens)
    starts: set[int] = set()
    ends: set[int] = set()
    offset = 0
    for token in d_tokens:
        starts.add(offset)
        offset += len(token)
        ends.add(offset)
    return any(joined.startswith(k_compact, s) and s + len(k_compact) in ends for s in starts)


def lexical_similarity(description: str, keyword: str) -> float:
    """Similarity in [0, 1] of ``keyword`` to ``description``.

    1.0 when the keyword covers whole words of the description in order
    (ignoring case, punctuation and spacing, so ``Amazon Mktp`` matches
    ``AMAZONMKTP``); a keyword buried inside a longer word (``ATM`` in
    ``TREATMENT``) does not count. Otherwise the average best per-token score
    of the keyword's tokens, where near spellings (``amzn``/``amazon``) and
    word prefixes count partially.
    """

    d_tokens = _tokens(description)
    k_tokens = _tokens(keyword)
    if not d_tokens or not k_tokens:
        return 0.0
    k_compact = "".join(k_tokens)
    if _compact_match(d_tokens, k_compact):
        return 1.0
    total = sum(max(_token_score(kt, dt) for dt in d_tokens) for kt in k_tokens)
    return round(total / len(k_tokens), 4)


# ---------------------------------------------------------------------------
# Decision rule
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MatchCandidate:
    item: HistoricalReferenceItem
    similarity: float
    created_at: Any = MISSING


def choose_match(
    candidates: Sequence[MatchCandidate],
    *,
    match_threshold: float = DEFAULT_MATCH_THRESHOLD,
    ambiguity_margin: float = DEFAULT_AMBIGUITY_MARGIN,
) -> MatchCandidate | None:
    """Return the strong, unambiguous best candidate, or ``None``."""

    if not candidates:
        return None
    ranked = sorted(candidates, key=lambda c: c.similarity, reverse=True)
    best = ranked[0]
    if best.similarity < match_threshold:
        return None
    pair = (best.item.vendor_customer_name, best.item.gl_account)
    for other in ranked[1:]:
        if best.similarity - other.similarity > ambiguity_margin:
            break
        if (other.item.vendor_customer_name, other.item.gl_account) != pair:
            return None
    return best


def _lexical_candidates(
    row: TransactionRow, reference_data: Sequence[HistoricalReferenceItem]
) -> list[MatchCandidate]:
    out: list[MatchCandidate] = []
    for item in reference_data:
        score = lexical_similarity(row.description, item.keyword)
        if score > 0:
            out.append(MatchCandidate(item=item, similarity=score))
    return out


# ---------------------------------------------------------------------------
# Oracle scorer
# ---------------------------------------------------------------------------


class _OracleMatch(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    id: str
    keyword: str
    similarity: float
    createdAt: Any = None

    @field_validator("similarity")
    @classmethod
    def _clamp(cls, v: float) -> float:
        return min(1.0, max(0.0, float(v)))


def _oracle_candidates(
    transactions: Sequence[TransactionRow],
    reference_data: Sequence[HistoricalReferenceItem],
    oracle: Oracle,
) -> dict[str, list[MatchCandidate]]:
    request = OracleRequest(
        task="reference_match",
        instructions=prompting.build_reference_match_instructions(),
        user_content=prompting.build_reference_match_content(transactions, reference_data),
        response_format=prompting.build_reference_match_response_format(),
    )
    body = oracle(request)
    matches = body.get("matches")
    if not isinstance(matches, list):
        raise SchemaMismatch("reference match response is missing a 'matches' array")

    ids = {t.id for t in transactions}
    by_keyword: dict[str, list[HistoricalReferenceItem]] = {}
    for item in reference_data:
        by_keyword.setdefault(item.keyword.strip().casefold(), []).append(item)

    out: dict[str, list[MatchCandidate]] = {}
    dropped = 0
    for raw in matches:
        try:
            m = _OracleMatch.model_validate(raw)
        except ValidationError:
            dropped += 1
            continue
        items = by_keyword.get(m.keyword.casefold())
        if m.id not in ids or not items:
            dropped += 1
            continue
        for item in items:
            out.setdefault(m.id, []).append(
                MatchCandidate(item=item, similarity=m.similarity, created_at=m.createdAt)
            )
    if dropped:
        _logger.warning("reference_match:dropped_candidates count=%d", dropped)
    return out


# ---------------------------------------------------------------------------
# Public entrypoint
# ---------------------------------------------------------------------------


def match_by_reference(
    transactions: Sequence[TransactionRow],
    reference_data: Sequence[HistoricalReferenceItem],
    *,
    oracle: Oracle | None = None,
    match_threshold: float = DEFAULT_MATCH_THRESHOLD,
    ambiguity_margin: float = DEFAULT_AMBIGUITY_MARGIN,
) -> CategorizationResult:
    """Categorize rows from reference data; unmatched rows are returned unchanged.

    With ``oracle=None`` the lexical scorer is used. An oracle failure leaves
    every row untouched and is reported in ``failure``.
    """

    rows = list(transactions)
    if not rows or not reference_data:
        return CategorizationResult(transactions=rows)

    if oracle is None:
        candidates = {r.id: _lexical_candidates(r, reference_data) for r in rows}
    else:
        try:
            candidates = _oracle_candidates(rows, reference_data, oracle)
        except (OracleUnavailable, SchemaMismatch) as e:
            _logger.warning("reference_match:failed error=%s", e)
            return CategorizationResult(transactions=rows, failure=str(e))

    out: list[TransactionRow] = []
    touched: set[str] = set()
    for row in rows:
        best = choose_match(
            candidates.get(row.id, []),
            match_threshold=match_threshold,
            ambiguity_margin=ambiguity_margin,
        )
        if best is None:
            out.append(row)
            continue
        out.append(
            merge_patch(
                row,
                vendor=best.item.vendor_customer_name,
                gl_account=best.item.gl_account,
                confidence=None,
                created_at=best.created_at,
            )
        )
        touched.add(row.id)

    _logger.info(
        "reference_match:done scorer=%s rows=%d categorized=%d",
        "lexical" if oracle is None else "oracle",
        len(rows),
        len(touched),
    )
    return CategorizationResult(transactions=out, categorized_ids=frozenset(touched))


__all__ = [
    "DEFAULT_AMBIGUITY_MARGIN",
    "DEFAULT_MATCH_THRESHOLD",
    "MatchCandidate",
    "choose_match",
    "lexical_similarity",
    "match_by_reference",
]
