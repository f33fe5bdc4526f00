"""
Main CLI entry point for crossvest.

Usage:
    crossvest --ledger airdrop-2025 deploy --start ... --end ... --admin ...
    crossvest --json-output status --identity 5Grw...
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from ..core import config
from ..core.logging_config import setup_logging
from .vesting_commands import COMMANDS, console

logger = logging.getLogger(__name__)


@click.group()
@click.option(
    "--db",
    "db_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=config.STATE_DB_PATH,
    show_default=True,
    help="SQLite ledger store",
)
@click.option("--ledger", "ledger_id", default="default", show_default=True, help="Ledger id inside the store")
@click.option("--json-output", is_flag=True, help="Output raw JSON")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=config.LOG_LEVEL,
    show_default=True,
)
@click.option("--log-file", type=click.Path(dir_okay=False), help="Write JSON logs to this file")
@click.option("--verbose", is_flag=True, help="Write JSON logs to stderr")
@click.pass_context
def cli(
    ctx: click.Context,
    db_path: Path,
    ledger_id: str,
    json_output: bool,
    log_level: str,
    log_file: Optional[str],
    verbose: bool,
):
    """
    crossvest - Vesting Ledger & Release Engine

    Operates a vesting ledger whose beneficiaries and donors may be
    addressed by native public keys or by their EVM addresses.
    """
    ctx.ensure_object(dict)
    package_logger = setup_logging(
        name="crossvest",
        log_file=log_file,
        level=log_level,
        environment=config.NETWORK.value,
        enable_console=verbose,
        enable_file=bool(log_file),
        ledger_id=ledger_id,
    )
    if not package_logger.handlers:
        package_logger.addHandler(logging.NullHandler())

    ctx.obj["db_path"] = db_path
    ctx.obj["ledger_id"] = ledger_id
    ctx.obj["json_output"] = json_output
    logger.debug("CLI initialised", extra={"event": "cli.start", "db_path": str(db_path), "ledger_id": ledger_id})


for command in COMMANDS:
    cli.add_command(command)


def main():
    """Main CLI entry point"""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/]")
        sys.exit(130)


if __name__ == "__main__":
    main()
