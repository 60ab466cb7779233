"""
cli.py — Operator commands, registered on the app as `flask balances ...`.

  flask balances recalculate   rebuild balance_aggregates from every expense
  flask balances verify        report rows whose stored balance has drifted

Both run inside the app context that the Flask CLI provides, against the
database in the active config.
"""

from __future__ import annotations

import click
from flask.cli import AppGroup

from backend.splitbuddy.extensions import db
from backend.splitbuddy.services import balance_service
from backend.splitbuddy.services.transaction import run_in_transaction

balances_cli = AppGroup("balances", help="Balance aggregate maintenance.")


@balances_cli.command("recalculate")
def recalculate_command() -> None:
    """Wipe and rebuild every balance aggregate from the expense history."""
    result = run_in_transaction(
        db.session,
        lambda: balance_service.recalculate_all(db.session),
        max_attempts=1,
    )
    click.echo(
        f"Replayed {result['expenses_replayed']} expenses: "
        f"{result['rows_deleted']} rows removed, "
        f"{result['aggregates_written']} rows written."
    )


@balances_cli.command("verify")
def verify_command() -> None:
    """Compare stored balances with a replay. Exits 1 on drift."""
    drift = balance_service.find_drift(db.session)
    if not drift:
        click.echo("Balances are in sync.")
        return

    for entry in drift:
        click.echo(f"{entry['key']}: stored={entry['stored']} expected={entry['expected']}")
    raise click.exceptions.Exit(1)
