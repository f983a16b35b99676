"""Balance accumulation with account-nature aware sign conventions.

A row's debit/credit is read from the bank account's perspective:
``amount_received`` debits the account, ``amount_paid`` credits it. For a
debit-normal account (asset, expense) the balance moves by
``received - paid``; for a credit-normal account (liability, equity, income)
the sign is inverted.

Works on anything exposing ``amount_paid`` / ``amount_received`` (both
:class:`~ledger_recon.models.StatementLine` and
:class:`~ledger_recon.models.TransactionRow`).
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable, Sequence
from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum
from typing import Any, Protocol, TypeVar

from .models import CENT, StatementLine

K = TypeVar("K", bound=Hashable)

ZERO = Decimal("0.00")


class AccountNature(StrEnum):
    ASSET = "asset"
    EXPENSE = "expense"
    LIABILITY = "liability"
    EQUITY = "equity"
    INCOME = "income"

    @property
    def debit_normal(self) -> bool:
        return self in (AccountNature.ASSET, AccountNature.EXPENSE)


class HasAmounts(Protocol):
    @property
    def amount_paid(self) -> Any: ...

    @property
    def amount_received(self) -> Any: ...


def to_money(value: Any) -> Decimal:
    """Coerce ``None``/float/int/str/Decimal to a cent-quantized ``Decimal``."""

    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, float):
        # str() avoids binary float artefacts (0.1 -> 0.1000000000000000055...)
        d = Decimal(str(value))
    else:
        d = Decimal(value)
    return d.quantize(CENT, rounding=ROUND_HALF_UP)


def net_effect(row: HasAmounts, nature: AccountNature = AccountNature.ASSET) -> Decimal:
    debit = to_money(row.amount_received)
    credit = to_money(row.amount_paid)
    return debit - credit if nature.debit_normal else credit - debit


def sum_signed(rows: Iterable[HasAmounts], nature: AccountNature = AccountNature.ASSET) -> Decimal:
    total = ZERO
    for row in rows:
        total += net_effect(row, nature)
    return total


def accumulate(
    rows: Iterable[HasAmounts],
    opening: Decimal | float | int | str = 0,
    nature: AccountNature = AccountNature.ASSET,
) -> list[Decimal]:
    """Return the running balance after each row, starting from ``opening``."""

    balance = to_money(opening)
    series: list[Decimal] = []
    for row in rows:
        balance += net_effect(row, nature)
        series.append(balance)
    return series


def balances_by(
    rows: Iterable[HasAmounts],
    key: Callable[[Any], K],
    nature_of: Callable[[K], AccountNature] | None = None,
) -> dict[K, Decimal]:
    """Fold rows into cumulative balances per ``key`` (contact, GL account, ...).

    ``nature_of`` maps each key to its account nature; keys default to
    :attr:`AccountNature.ASSET`. Insertion order follows first appearance.
    """

    out: dict[K, Decimal] = {}
    for row in rows:
        k = key(row)
        nature = nature_of(k) if nature_of is not None else AccountNature.ASSET
        out[k] = out.get(k, ZERO) + net_effect(row, nature)
    return out


def compute_discrepancy(
    opening: Decimal | float | int | str,
    closing: Decimal | float | int | str,
    rows: Iterable[HasAmounts],
) -> Decimal:
    """``(opening + Σreceived − Σpaid) − closing``; positive means computed is too high."""

    computed_closing = to_money(opening) + sum_signed(rows, AccountNature.ASSET)
    return computed_closing - to_money(closing)


def with_running_balance(
    lines: Sequence[StatementLine], opening: Decimal | float | int | str
) -> list[list[str]]:
    """Render lines as a 5-column table with a recomputed ``Balance`` column."""

    table = [["Date", "Description", "Amount Paid", "Amount Received", "Balance"]]
    for line, balance in zip(lines, accumulate(lines, opening), strict=True):
        table.append([*line.to_cells(), f"{balance:.2f}"])
    return table


__all__ = [
    "AccountNature",
    "accumulate",
    "balances_by",
    "compute_discrepancy",
    "net_effect",
    "sum_signed",
    "to_money",
    "with_running_balance",
]
