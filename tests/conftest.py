# ruff: noqa: E402, I001
"""Pytest configuration shared by all tests.

- Puts the workspace ``packages/`` directory (and the repo root, for
  ``tests.helpers``) on ``sys.path`` so ``ledger_recon`` imports without an
  install.
- Clears ``LEDGER_RECON_*`` variables per test so a developer's shell or
  ``.env`` cannot change thresholds or the model under test.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
# Ensure `packages/` precedes the repo root on sys.path so local packages resolve first.
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

from ledger_recon.models import TransactionRow


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("LEDGER_RECON_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_row():
    """Factory for ledger rows with sensible defaults; keyword overrides use wire names."""

    def _make(id: str = "t1", **overrides) -> TransactionRow:
        record = {
            "id": id,
            "bankName": "Chase Business Checking",
            "date": "2023-08-15",
            "description": "AMZN Mktp US*2K3",
            "vendor": "-",
            "glAccount": "-",
            "amountPaid": 42.5,
            "amountReceived": None,
        }
        record.update(overrides)
        return TransactionRow.from_record(record)

    return _make
