# ruff: noqa: I001
"""Operator CLI for the ``ledger_recon`` package.

JSON in, JSON out: each command reads its inputs from files, calls the
service functions in :mod:`ledger_recon.api`, and prints a JSON document on
stdout. Environment variables (notably ``OPENAI_API_KEY`` and the
``LEDGER_RECON_*`` settings) are loaded from a local ``.env`` with
``python-dotenv`` before any command runs.
"""

from __future__ import annotations

import json
import mimetypes
import sys
from decimal import InvalidOperation
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from typer.models import OptionInfo

from .logging_setup import configure_logging


# ---- Small module-level helpers ----------------------------------------------


def _read_json(path: Path) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        typer.echo(f"Error: File not found: {path}", err=True)
        raise typer.Exit(1) from None
    except json.JSONDecodeError as e:
        typer.echo(f"Error: {path} is not valid JSON: {e}", err=True)
        raise typer.Exit(1) from None


def _read_text(path: Path | None) -> str | None:
    if path is None:
        return None
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        typer.echo(f"Error: File not found: {path}", err=True)
        raise typer.Exit(1) from None


def _load_document(path: Path):
    from .models import SourceDocument

    mime, _ = mimetypes.guess_type(path.name)
    if mime is None:
        typer.echo(f"Error: cannot determine the MIME type of {path}", err=True)
        raise typer.Exit(1)
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        typer.echo(f"Error: File not found: {path}", err=True)
        raise typer.Exit(1) from None
    return SourceDocument(data=data, mime_type=mime, filename=path.name)


def _load_lines(data: Any) -> list:
    """Accept an ``extractedTable`` (header first) or a list of ledger records."""

    from .models import DocumentType, StatementLine, TransactionRow
    from .normalizer import HEADERS, parse_statement_cells

    if not isinstance(data, list):
        raise ValueError("transactions must be a JSON array")
    if data and all(isinstance(r, list) for r in data):
        header = HEADERS[DocumentType.BANK_STATEMENT]
        first = [str(c).strip().casefold() for c in data[0][:4]]
        rows = data[1:] if first == [h.casefold() for h in header] else data
        return [parse_statement_cells(r[:4]) for r in rows]
    return [StatementLine.from_row(TransactionRow.from_record(r)) for r in data]


def _emit(payload: Any) -> None:
    json.dump(payload, sys.stdout, indent=2, ensure_ascii=False, default=str)
    sys.stdout.write("\n")


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Extract, categorize and reconcile bank statement transactions using OpenAI "
        "(Responses API). Loads OPENAI_API_KEY from a local .env before running."
    ),
)

# Module-level option object keeps calls out of parameter defaults (ruff B008).
TRANSACTIONS_OPTION: OptionInfo = typer.Option(
    ...,
    "--transactions",
    help="JSON file: a list of ledger records, or an extractedTable (header first).",
    dir_okay=False,
)


@app.command("extract")
def extract_cmd(
    document: Annotated[
        list[Path] | None,
        typer.Option("--document", help="Document file (image or PDF); repeat per page."),
    ] = None,
    *,
    document_type: str = typer.Option(
        "bankStatement",
        "--type",
        help="bankStatement, creditCard, vendorBill or check.",
    ),
    ocr_text: Annotated[
        Path | None,
        typer.Option("--ocr-text", help="Text file with OCR output of the document."),
    ] = None,
    statement_year: str | None = typer.Option(
        None, "--year", help="Statement year for dates printed without one."
    ),
) -> None:
    from .api import extract_document

    pages = [_load_document(p) for p in document or []]
    result = extract_document(
        pages or None,
        document_type,
        ocr_text=_read_text(ocr_text),
        statement_year=statement_year,
    )
    _emit({"extractedTable": result.table, "message": result.message})


@app.command("categorize")
def categorize_cmd(
    transactions: Annotated[Path, TRANSACTIONS_OPTION],
    *,
    reference: Path | None = typer.Option(
        None, "--reference", help="JSON file with historical reference items."
    ),
    gl_accounts: Path | None = typer.Option(
        None, "--gl-accounts", help="JSON file with the list of available GL accounts."
    ),
    scorer: str = typer.Option(
        "lexical", "--scorer", help="Reference matching scorer: lexical or oracle."
    ),
) -> None:
    from .api import categorize
    from .settings import Settings

    settings = Settings.from_env()
    records = _read_json(transactions)
    result = categorize(
        records,
        reference_data=_read_json(reference) if reference else (),
        available_gl_accounts=_read_json(gl_accounts) if gl_accounts else (),
        reference_scorer=scorer,
        settings=settings,
    )
    _emit(
        {
            "transactions": [t.to_record() for t in result.transactions],
            "categorizedIds": sorted(result.categorized_ids),
            "counts": result.counts,
            "needsReview": result.needs_review(settings.low_confidence_threshold),
            "failure": result.failure,
        }
    )
    if result.failure:
        raise typer.Exit(2)


@app.command("reconcile")
def reconcile_cmd(
    transactions: Annotated[Path, TRANSACTIONS_OPTION],
    *,
    opening: str = typer.Option(..., "--opening", help="Opening balance."),
    closing: str = typer.Option(..., "--closing", help="Closing balance."),
    document: Path | None = typer.Option(
        None, "--document", help="Statement file (image or PDF).", dir_okay=False
    ),
    ocr_text: Annotated[
        Path | None,
        typer.Option("--ocr-text", help="Text file with OCR output of the document."),
    ] = None,
) -> None:
    from .accumulator import to_money, with_running_balance
    from .api import reconcile_statement

    try:
        opening_balance, closing_balance = to_money(opening), to_money(closing)
    except InvalidOperation:
        typer.echo(f"Error: balances must be numbers: {opening!r}, {closing!r}", err=True)
        raise typer.Exit(1) from None
    try:
        lines = _load_lines(_read_json(transactions))
    except (ValueError, TypeError) as e:
        typer.echo(f"Error: invalid transactions: {e}", err=True)
        raise typer.Exit(1) from None
    source = _load_document(document) if document else None
    try:
        result = reconcile_statement(
            opening_balance, closing_balance, lines, source, _read_text(ocr_text)
        )
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    _emit(
        {
            "outcome": result.outcome.value,
            "correctedTransactions": (
                with_running_balance(result.corrected_transactions, opening_balance)
                if result.corrected_transactions
                else []
            ),
            "explanation": result.explanation,
            "discrepancy": result.discrepancy,
            "changes": result.changes.summary(),
            "message": result.message,
            "warnings": list(result.warnings),
        }
    )
    if not result.ok:
        raise typer.Exit(2)


@app.command("balances")
def balances_cmd(
    transactions: Annotated[Path, TRANSACTIONS_OPTION],
    *,
    by: str = typer.Option("glAccount", "--by", help="Group by vendor or glAccount."),
    nature: str = typer.Option(
        "asset", "--nature", help="Account nature: asset, expense, liability, equity, income."
    ),
) -> None:
    from .accumulator import AccountNature, balances_by
    from .models import TransactionRow

    if by not in ("vendor", "glAccount"):
        typer.echo("Error: --by must be vendor or glAccount", err=True)
        raise typer.Exit(1)
    try:
        account_nature = AccountNature(nature)
    except ValueError:
        typer.echo(f"Error: unknown account nature: {nature!r}", err=True)
        raise typer.Exit(1) from None

    records = _read_json(transactions)
    if not isinstance(records, list):
        typer.echo("Error: invalid transactions: expected a JSON array", err=True)
        raise typer.Exit(1)
    try:
        rows = [TransactionRow.from_record(r) for r in records]
    except (ValidationError, TypeError) as e:
        typer.echo(f"Error: invalid transactions: {e}", err=True)
        raise typer.Exit(1) from None
    attr = "vendor" if by == "vendor" else "gl_account"
    totals = balances_by(rows, lambda r: getattr(r, attr), lambda _k: account_nature)
    _emit({k: f"{v:.2f}" for k, v in totals.items()})


@app.callback()
def _root() -> None:
    """Load ``.env`` from the working directory and configure logging."""

    # override=False keeps variables already set in the environment
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


if __name__ == "__main__":  # pragma: no cover
    app()
