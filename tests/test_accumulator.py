from decimal import Decimal

import pytest

from ledger_recon.accumulator import (
    AccountNature,
    accumulate,
    balances_by,
    compute_discrepancy,
    net_effect,
    to_money,
    with_running_balance,
)
from ledger_recon.models import StatementLine


def _line(paid=None, received=None, desc="x"):
    return StatementLine(
        date="2023-08-01",
        description=desc,
        amount_paid=Decimal(paid) if paid else None,
        amount_received=Decimal(received) if received else None,
    )


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, Decimal("0.00")),
        ("", Decimal("0.00")),
        (0.1, Decimal("0.10")),
        (2.675, Decimal("2.68")),
        ("1000", Decimal("1000.00")),
        (7, Decimal("7.00")),
        (Decimal("1.005"), Decimal("1.01")),
    ],
)
def test_to_money(value, expected):
    assert to_money(value) == expected


@pytest.mark.parametrize(
    ("nature", "expected"),
    [
        (AccountNature.ASSET, Decimal("-30.00")),
        (AccountNature.EXPENSE, Decimal("-30.00")),
        (AccountNature.LIABILITY, Decimal("30.00")),
        (AccountNature.EQUITY, Decimal("30.00")),
        (AccountNature.INCOME, Decimal("30.00")),
    ],
)
def test_net_effect_follows_account_nature(nature, expected):
    assert net_effect(_line(paid="30"), nature) == expected


def test_accumulate_running_balance():
    rows = [_line(received="300"), _line(paid="50"), _line(paid="12.34")]
    assert accumulate(rows, "1000") == [
        Decimal("1300.00"),
        Decimal("1250.00"),
        Decimal("1237.66"),
    ]
    assert accumulate([], 5) == []


def test_balances_by_key_and_nature(make_row):
    rows = [
        make_row("a", vendor="Uber", glAccount="Travel", amountPaid=20.0),
        make_row("b", vendor="Client", glAccount="Sales", amountPaid=None, amountReceived=500.0),
        make_row("c", vendor="Uber", glAccount="Travel", amountPaid=5.5),
    ]
    natures = {"Travel": AccountNature.EXPENSE, "Sales": AccountNature.INCOME}

    by_gl = balances_by(rows, key=lambda r: r.gl_account, nature_of=natures.__getitem__)

    assert by_gl == {"Travel": Decimal("-25.50"), "Sales": Decimal("-500.00")}
    assert list(balances_by(rows, key=lambda r: r.vendor)) == ["Uber", "Client"]


def test_compute_discrepancy_sign():
    rows = [_line(received="300"), _line(paid="50")]
    assert compute_discrepancy("1000", "1200", rows) == Decimal("50.00")
    assert compute_discrepancy("1000", "1300", rows) == Decimal("-50.00")
    assert compute_discrepancy(1000, 1250.0, rows) == Decimal("0.00")


def test_with_running_balance_table():
    table = with_running_balance([_line(received="300", desc="Deposit"), _line(paid="50")], 0)
    assert table == [
        ["Date", "Description", "Amount Paid", "Amount Received", "Balance"],
        ["2023-08-01", "Deposit", "", "300.00", "300.00"],
        ["2023-08-01", "x", "50.00", "", "250.00"],
    ]
