"""End-to-end: OCR text → extractedTable → reconciliation, driven through the CLI.

The OpenAI client is replaced with a stub; everything else (settings from the
environment, prompting, normalization, verification) runs for real.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

import ledger_recon.oracle as oracle_mod
from ledger_recon.cli import app
from tests.helpers.oracle_stub import OpenAIStub, make_response, openai_factory

OCR = """\
FIRST TRUST BANK                      Statement period Aug 01 - Aug 31, 2023
Opening balance                                                    1,000.00
08/01  ACME CORP PAYROLL                                 300.00
08/10  OFFICE RENT                        50.00
08/15  AMZN Mktp US*2K3                   50.00
Closing balance                                                    1,200.00
"""


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("LEDGER_RECON_MODEL", "gpt-e2e")
    (tmp_path / "ocr.txt").write_text(OCR, encoding="utf-8")
    return tmp_path


def _stub_openai(monkeypatch: pytest.MonkeyPatch, payload: dict) -> list[OpenAIStub]:
    created: list[OpenAIStub] = []
    monkeypatch.setattr(oracle_mod, "OpenAI", openai_factory(make_response(payload), created))
    return created


def test_extract_then_reconcile(workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    runner = CliRunner()

    # The extraction misses the Amazon debit.
    extract_clients = _stub_openai(
        monkeypatch,
        {
            "extractedTable": [
                ["Date", "Description", "Amount Paid", "Amount Received"],
                ["08/01", "ACME CORP PAYROLL", "", "300.00"],
                ["08/10", "OFFICE RENT", "50.00", ""],
                ["", "Closing balance", "", "1,200.00"],
            ],
            "message": "",
        },
    )
    res = runner.invoke(
        app, ["extract", "--ocr-text", "ocr.txt", "--year", "2023", "--type", "bankStatement"]
    )
    assert res.exit_code == 0, res.output
    extracted = json.loads(res.stdout)
    assert extracted["extractedTable"] == [
        ["Date", "Description", "Amount Paid", "Amount Received"],
        ["2023-08-01", "ACME CORP PAYROLL", "", "300.00"],
        ["2023-08-10", "OFFICE RENT", "50.00", ""],
    ]
    (call,) = extract_clients[0].calls
    assert call["model"] == "gpt-e2e"
    assert "ACME CORP PAYROLL" in call["input"]

    (workdir / "table.json").write_text(json.dumps(extracted["extractedTable"]))

    reconcile_clients = _stub_openai(
        monkeypatch,
        {
            "correctedTransactions": [
                {"date": "2023-08-01", "description": "ACME CORP PAYROLL",
                 "amountPaid": "", "amountReceived": "300.00"},
                {"date": "2023-08-10", "description": "OFFICE RENT",
                 "amountPaid": "50.00", "amountReceived": ""},
                {"date": "2023-08-15", "description": "AMZN Mktp US*2K3",
                 "amountPaid": "50.00", "amountReceived": ""},
            ],
            "explanation": "Added missing debit of $50.00 on 2023-08-15 for AMZN Mktp US*2K3.",
        },
    )
    res = runner.invoke(
        app,
        [
            "reconcile",
            "--transactions",
            "table.json",
            "--opening",
            "1000.00",
            "--closing",
            "1200.00",
            "--ocr-text",
            "ocr.txt",
        ],
    )
    assert res.exit_code == 0, res.output
    out = json.loads(res.stdout)
    assert out["outcome"] == "reconciled"
    assert out["discrepancy"] == "0.00"
    assert out["changes"] == "1 added, 0 removed"
    assert out["correctedTransactions"][-1] == [
        "2023-08-15",
        "AMZN Mktp US*2K3",
        "50.00",
        "",
        "1200.00",
    ]
    assert "too HIGH" in reconcile_clients[0].calls[0]["input"]


def test_reconcile_unresolved_exits_2(workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (workdir / "table.json").write_text(
        json.dumps([["2023-08-01", "ACME CORP PAYROLL", "", "300.00"]])
    )
    _stub_openai(
        monkeypatch,
        {
            "correctedTransactions": [["2023-08-01", "ACME CORP PAYROLL", "", "300.00"]],
            "explanation": "No change found.",
        },
    )

    res = CliRunner().invoke(
        app,
        ["reconcile", "--transactions", "table.json", "--opening", "1000", "--closing", "1200",
         "--ocr-text", "ocr.txt"],
    )

    assert res.exit_code == 2
    out = json.loads(res.stdout)
    assert out["outcome"] == "unresolved"
    assert out["discrepancy"] == "100.00"


def test_balances_by_gl_account(workdir: Path) -> None:
    records = [
        {"id": "a", "bankName": "Chase", "date": "2023-08-01", "description": "Uber",
         "vendor": "Uber", "glAccount": "Travel", "amountPaid": 20.0},
        {"id": "b", "bankName": "Chase", "date": "2023-08-02", "description": "Uber",
         "vendor": "Uber", "glAccount": "Travel", "amountPaid": 5.5},
        {"id": "c", "bankName": "Chase", "date": "2023-08-03", "description": "Refund",
         "vendor": "Staples", "glAccount": "Office Supplies", "amountReceived": 10.0},
    ]
    (workdir / "rows.json").write_text(json.dumps(records))

    res = CliRunner().invoke(
        app, ["balances", "--transactions", "rows.json", "--nature", "expense"]
    )

    assert res.exit_code == 0, res.output
    assert json.loads(res.stdout) == {"Travel": "-25.50", "Office Supplies": "10.00"}


def test_categorize_failure_exits_2(workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    import httpx
    import openai

    created: list[OpenAIStub] = []
    error = openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com"))
    monkeypatch.setattr(oracle_mod, "OpenAI", openai_factory(error, created))
    (workdir / "rows.json").write_text(
        json.dumps(
            [{"id": "a", "bankName": "Chase", "date": "2023-08-01",
              "description": "DELTA AIR", "amountPaid": 420.0}]
        )
    )
    (workdir / "gl.json").write_text(json.dumps(["Travel", "Meals"]))

    res = CliRunner().invoke(
        app, ["categorize", "--transactions", "rows.json", "--gl-accounts", "gl.json"]
    )

    assert res.exit_code == 2
    out = json.loads(res.stdout)
    assert out["failure"]
    assert out["transactions"][0]["confidenceScore"] == 0.0
    assert out["transactions"][0]["glAccount"] == "-"


def test_reconcile_rejects_non_numeric_balance(workdir: Path) -> None:
    (workdir / "table.json").write_text(
        json.dumps([["2023-08-01", "ACME CORP PAYROLL", "", "300.00"]])
    )

    res = CliRunner().invoke(
        app,
        ["reconcile", "--transactions", "table.json", "--opening", "one thousand",
         "--closing", "1200", "--ocr-text", "ocr.txt"],
    )

    assert res.exit_code == 1
    assert not isinstance(res.exception, ArithmeticError)


def test_balances_rejects_row_with_both_amounts(workdir: Path) -> None:
    (workdir / "rows.json").write_text(
        json.dumps(
            [{"id": "a", "bankName": "Chase", "date": "2023-08-01", "description": "Uber",
              "amountPaid": 20.0, "amountReceived": 5.0}]
        )
    )

    res = CliRunner().invoke(app, ["balances", "--transactions", "rows.json"])

    assert res.exit_code == 1
    assert not isinstance(res.exception, ValueError)
