"""Environment-driven configuration.

All knobs are optional; defaults match the production deployment. The CLI
loads a local ``.env`` (python-dotenv) before calling :meth:`Settings.from_env`;
library callers may construct :class:`Settings` directly.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

_PREFIX = "LEDGER_RECON_"


def _env_optional_float(env: Mapping[str, str], name: str) -> float | None:
    raw = env.get(_PREFIX + name)
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{_PREFIX}{name} must be a number, got {raw!r}") from e


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = _env_optional_float(env, name)
    return default if value is None else value


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{_PREFIX}{name} must be an integer, got {raw!r}") from e
    if value < 1:
        raise ValueError(f"{_PREFIX}{name} must be >= 1, got {value}")
    return value


@dataclass(frozen=True, slots=True)
class Settings:
    """Runtime settings for oracle calls and categorization thresholds.

    Attributes
    ----------
    model:
        OpenAI model name used by :class:`~ledger_recon.oracle.OpenAIOracle`.
    timeout_sec:
        Per-call timeout; an elapsed timeout is an ``OracleUnavailable`` failure.
    temperature:
        Sampling temperature; ``None`` means the parameter is not sent (reasoning
        models reject it).
    match_threshold:
        Minimum similarity for a reference-data match to count as strong.
    ambiguity_margin:
        A runner-up with a different vendor/GL pair within this margin of the
        best match makes the match ambiguous.
    low_confidence_threshold:
        Rows below this confidence are flagged for human review.
    page_concurrency:
        Maximum in-flight oracle calls for multi-page extraction.
    """

    model: str = "gpt-5"
    timeout_sec: float = 120.0
    temperature: float | None = None
    match_threshold: float = 0.80
    ambiguity_margin: float = 0.05
    low_confidence_threshold: float = 0.5
    page_concurrency: int = 4

    def __post_init__(self) -> None:
        for name in ("match_threshold", "ambiguity_margin", "low_confidence_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0,1], got {value}")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if env is None else env
        defaults = cls()
        return cls(
            model=(env.get(_PREFIX + "MODEL") or defaults.model).strip(),
            timeout_sec=_env_float(env, "TIMEOUT_SEC", defaults.timeout_sec),
            temperature=_env_optional_float(env, "TEMPERATURE"),
            match_threshold=_env_float(env, "MATCH_THRESHOLD", defaults.match_threshold),
            ambiguity_margin=_env_float(env, "AMBIGUITY_MARGIN", defaults.ambiguity_margin),
            low_confidence_threshold=_env_float(
                env, "LOW_CONFIDENCE", defaults.low_confidence_threshold
            ),
            page_concurrency=_env_int(env, "PAGE_CONCURRENCY", defaults.page_concurrency),
        )


__all__ = ["Settings"]
