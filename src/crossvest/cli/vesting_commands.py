#!/usr/bin/env python3
"""
crossvest Ledger CLI Commands - Operator Interface

Provides CLI commands for the full ledger lifecycle:
- Snapshot classification into contract / airdrop cohorts
- Ledger deployment and batched beneficiary registration
- Donations, releases and donation refunds
- Ledger status and identity translation
"""

from __future__ import annotations

import json
import logging
import math
import sys
from datetime import datetime, timezone
from typing import Any

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..contracts.vesting_ledger import VestingLedger
from ..core import config
from ..core.config import RefundPolicy
from ..core.identity import DualIdentity, ledger_key, parse_identity, translate_native_to_evm
from ..core.ledger_exceptions import LedgerError
from ..database.ledger_store import LedgerStore
from ..tools.batching import BatchResult, cohort_to_registration, register_in_batches
from ..tools.snapshot import classify_accounts, load_cohort, load_snapshot, write_cohorts

logger = logging.getLogger(__name__)
console = Console()


def _handle_cli_error(exc: Exception, exit_code: int = 1) -> None:
    """Centralized CLI error handler for consistent messaging/exit codes."""
    logger.error("CLI error: %s", exc, exc_info=True)
    console.print(f"[bold red]Error:[/] {exc}")
    sys.exit(exit_code)


def _emit_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2))


def _open_store(ctx: click.Context) -> LedgerStore:
    return LedgerStore(ctx.obj["db_path"])


def _parse_datetime(value: str) -> datetime:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise click.BadParameter(f"Not an ISO 8601 timestamp: {value}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_identity_option(value: str, name: str) -> DualIdentity:
    try:
        return parse_identity(value)
    except LedgerError as exc:
        raise click.BadParameter(str(exc), param_hint=name) from exc


def _format_time(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _render_batches(results: list[BatchResult]) -> None:
    table = Table(title="Registered Batches", box=box.ROUNDED)
    table.add_column("Accounts", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Total Amount", style="green", justify="right")
    for result in results:
        table.add_row(
            f"{result.index}..{result.index + result.size}",
            str(result.size),
            str(result.total_amount),
        )
    console.print(table)


def _load_registration(accounts_path: str) -> list[tuple[DualIdentity, int]]:
    return cohort_to_registration(load_cohort(accounts_path), config.TOKEN_DECIMALS)


def _register_cohort(
    store: LedgerStore,
    ledger_id: str,
    caller: DualIdentity,
    pairs: list[tuple[DualIdentity, int]],
    batch_size: int,
    start_from: int,
) -> tuple[list[BatchResult], LedgerError | None]:
    """Register cohort pairs; committed chunks are persisted even if a later one fails."""
    committed: list[BatchResult] = []
    failure: LedgerError | None = None
    with store.transaction(ledger_id) as ledger:
        try:
            register_in_batches(
                ledger, caller, pairs, batch_size=batch_size, start_from=start_from, on_batch=committed.append
            )
        except LedgerError as exc:
            failure = exc
    return committed, failure


def _resume_hint(committed: list[BatchResult], start_from: int) -> int:
    if not committed:
        return start_from
    last = committed[-1]
    return last.index + last.size


# ============================================================================
# Snapshot
# ============================================================================


@click.command("classify")
@click.argument("snapshot", type=click.Path(exists=True, dir_okay=False))
@click.option("--contract-out", default="contract-accounts.json", show_default=True, help="Contract cohort file")
@click.option("--airdrop-out", default="airdrop-accounts.json", show_default=True, help="Airdrop cohort file")
@click.option("--stats-out", default="stats.json", show_default=True, help="Statistics file")
@click.option("--threshold", default=config.SNAPSHOT_THRESHOLD, type=int, show_default=True)
@click.option("--exchange-rate", default=config.EXCHANGE_RATE, type=click.IntRange(min=1), show_default=True)
@click.option("--decimals", default=config.TOKEN_DECIMALS, type=click.IntRange(min=0), show_default=True)
@click.pass_context
def classify(
    ctx: click.Context,
    snapshot: str,
    contract_out: str,
    airdrop_out: str,
    stats_out: str,
    threshold: int,
    exchange_rate: int,
    decimals: int,
):
    """
    Split a balance snapshot into contract and airdrop cohorts.

    Example:
        crossvest classify snapshot.json --threshold 25 --exchange-rate 25
    """
    try:
        result = classify_accounts(
            load_snapshot(snapshot), threshold=threshold, exchange_rate=exchange_rate, decimals=decimals
        )
        write_cohorts(result, contract_out, airdrop_out, stats_out)
    except (LedgerError, OSError) as exc:
        _handle_cli_error(exc)
        return

    summary = {
        "contract_accounts": len(result.contract),
        "airdrop_accounts": len(result.airdrop),
        **result.stats,
    }
    if ctx.obj.get("json_output"):
        _emit_json(summary)
        return

    table = Table(show_header=False, box=box.ROUNDED)
    table.add_row("[bold cyan]Contract accounts", str(len(result.contract)))
    table.add_row("[bold cyan]Units required for contract", str(result.contract_unq))
    table.add_row("[bold yellow]Airdrop accounts", str(len(result.airdrop)))
    table.add_row("[bold yellow]Units required for airdrop", str(result.airdrop_unq))
    table.add_row("[dim]Below threshold", str(result.less25))
    console.print(Panel(table, title="[bold green]Snapshot Classified", border_style="green"))


# ============================================================================
# Deployment & Registration
# ============================================================================


@click.command("deploy")
@click.option("--start", "start_text", required=True, help="Vesting start (ISO 8601, UTC if no offset)")
@click.option("--end", "end_text", required=True, help="Vesting end (ISO 8601, UTC if no offset)")
@click.option("--admin", required=True, help="Admin identity (SS58, 0x address or 0x public key)")
@click.option("--accounts", type=click.Path(exists=True, dir_okay=False), help="Contract cohort to register")
@click.option("--batch-size", default=config.BATCH_SIZE, type=click.IntRange(min=1), show_default=True)
@click.option(
    "--refund-policy",
    type=click.Choice([policy.value for policy in RefundPolicy]),
    default=config.REFUND_POLICY.value,
    show_default=True,
)
@click.pass_context
def deploy(
    ctx: click.Context,
    start_text: str,
    end_text: str,
    admin: str,
    accounts: str | None,
    batch_size: int,
    refund_policy: str,
):
    """
    Create a new ledger and optionally register a cohort.

    Example:
        crossvest deploy --start 2025-11-05T14:30:00Z --end 2026-04-01T00:00:00Z --admin 0x...
    """
    start = _parse_datetime(start_text)
    end = _parse_datetime(end_text)
    admin_identity = _parse_identity_option(admin, "--admin")
    start_timestamp = int(start.timestamp())
    duration = math.ceil((end - start).total_seconds())
    ledger_id = ctx.obj["ledger_id"]

    committed: list[BatchResult] = []
    failure: LedgerError | None = None
    try:
        pairs = _load_registration(accounts) if accounts else []
        with _open_store(ctx) as store:
            ledger = VestingLedger(
                admin=admin_identity,
                start=start_timestamp,
                duration=duration,
                refund_policy=RefundPolicy(refund_policy),
            )
            store.create(ledger_id, ledger)
            if pairs:
                committed, failure = _register_cohort(store, ledger_id, admin_identity, pairs, batch_size, 0)
            ledger = store.load(ledger_id)
    except LedgerError as exc:
        _handle_cli_error(exc)
        return

    summary = {
        "ledger_id": ledger_id,
        "start": ledger.start,
        "duration": ledger.duration,
        "end": ledger.end,
        "admin": ledger_key(admin_identity),
        "refund_policy": ledger.refund_policy.value,
        "beneficiaries": ledger.beneficiary_count(),
        "total_allocated": ledger.total_allocated(),
    }
    if ctx.obj.get("json_output"):
        _emit_json(summary)
    else:
        table = Table(show_header=False, box=box.ROUNDED)
        table.add_row("[bold cyan]Ledger", ledger_id)
        table.add_row("[bold cyan]Start", f"{_format_time(ledger.start)} ({ledger.start})")
        table.add_row("[bold cyan]End", f"{_format_time(ledger.end)} ({ledger.end})")
        table.add_row("[bold cyan]Duration (seconds)", str(ledger.duration))
        table.add_row("[bold yellow]Beneficiaries", str(ledger.beneficiary_count()))
        table.add_row("[bold green]Total allocation", str(ledger.total_allocated()))
        console.print(Panel(table, title="[bold green]Ledger Deployed", border_style="green"))
        if committed:
            _render_batches(committed)

    if failure is not None:
        console.print(f"[yellow]Resume with:[/] crossvest register {accounts} --start-from {_resume_hint(committed, 0)}")
        _handle_cli_error(failure)


@click.command("register")
@click.argument("accounts", type=click.Path(exists=True, dir_okay=False))
@click.option("--caller", required=True, help="Admin identity submitting the batches")
@click.option("--batch-size", default=config.BATCH_SIZE, type=click.IntRange(min=1), show_default=True)
@click.option("--start-from", default=0, type=click.IntRange(min=0), show_default=True)
@click.pass_context
def register(ctx: click.Context, accounts: str, caller: str, batch_size: int, start_from: int):
    """
    Register a contract cohort in batches.

    Example:
        crossvest register contract-accounts.json --caller 0x... --batch-size 250
    """
    caller_identity = _parse_identity_option(caller, "--caller")
    try:
        with _open_store(ctx) as store:
            committed, failure = _register_cohort(
                store, ctx.obj["ledger_id"], caller_identity, _load_registration(accounts), batch_size, start_from
            )
    except LedgerError as exc:
        _handle_cli_error(exc)
        return

    if ctx.obj.get("json_output"):
        _emit_json(
            {
                "batches": [
                    {"index": r.index, "size": r.size, "total_amount": r.total_amount} for r in committed
                ],
                "next_start_from": _resume_hint(committed, start_from),
                "error": str(failure) if failure else None,
            }
        )
    elif committed:
        _render_batches(committed)
    else:
        console.print("[yellow]No accounts registered[/]")

    if failure is not None:
        if not ctx.obj.get("json_output"):
            console.print(f"[yellow]Resume with:[/] --start-from {_resume_hint(committed, start_from)}")
        _handle_cli_error(failure)


# ============================================================================
# Ledger Operations
# ============================================================================


@click.command("donate")
@click.option("--donor", required=True, help="Donor identity")
@click.option("--amount", required=True, type=click.IntRange(min=1), help="Amount in base units")
@click.pass_context
def donate(ctx: click.Context, donor: str, amount: int):
    """Fund the ledger pool."""
    donor_identity = _parse_identity_option(donor, "--donor")
    try:
        with _open_store(ctx) as store, store.transaction(ctx.obj["ledger_id"]) as ledger:
            contributed = ledger.donate(donor_identity, amount)
            available = ledger.available_funds()
    except LedgerError as exc:
        _handle_cli_error(exc)
        return

    data = {
        "donor": ledger_key(donor_identity),
        "amount": amount,
        "contribution": contributed,
        "available_funds": available,
    }
    if ctx.obj.get("json_output"):
        _emit_json(data)
        return
    console.print(f"[bold green]Donated[/] {amount} from {data['donor']} (pool: {available})")


@click.command("release")
@click.option("--beneficiary", required=True, help="Beneficiary identity")
@click.option("--caller", help="Submitting identity (defaults to the beneficiary)")
@click.pass_context
def release(ctx: click.Context, beneficiary: str, caller: str | None):
    """Release the beneficiary's vested, funded tokens."""
    beneficiary_identity = _parse_identity_option(beneficiary, "--beneficiary")
    caller_identity = _parse_identity_option(caller, "--caller") if caller else None
    try:
        with _open_store(ctx) as store, store.transaction(ctx.obj["ledger_id"]) as ledger:
            amount = ledger.release(beneficiary_identity, caller=caller_identity)
            released = ledger.released_amount(beneficiary_identity)
    except LedgerError as exc:
        _handle_cli_error(exc)
        return

    data = {"beneficiary": ledger_key(beneficiary_identity), "amount": amount, "released_total": released}
    if ctx.obj.get("json_output"):
        _emit_json(data)
        return
    console.print(f"[bold green]Released[/] {amount} to {data['beneficiary']} (total released: {released})")


@click.command("refund")
@click.option("--donor", required=True, help="Donor identity")
@click.option("--amount", required=True, type=click.IntRange(min=1), help="Amount in base units")
@click.option("--caller", help="Submitting identity (defaults to the donor)")
@click.pass_context
def refund(ctx: click.Context, donor: str, amount: int, caller: str | None):
    """Reclaim part of a donation still held by the ledger."""
    donor_identity = _parse_identity_option(donor, "--donor")
    caller_identity = _parse_identity_option(caller, "--caller") if caller else None
    try:
        with _open_store(ctx) as store, store.transaction(ctx.obj["ledger_id"]) as ledger:
            refunded = ledger.refund_donation(donor_identity, amount, caller=caller_identity)
            available = ledger.available_funds()
    except LedgerError as exc:
        _handle_cli_error(exc)
        return

    data = {"donor": ledger_key(donor_identity), "amount": refunded, "available_funds": available}
    if ctx.obj.get("json_output"):
        _emit_json(data)
        return
    console.print(f"[bold green]Refunded[/] {refunded} to {data['donor']} (pool: {available})")


@click.command("status")
@click.option("--identity", help="Show the record of one beneficiary / donor")
@click.option("--at", "at", type=int, help="Evaluate at this unix timestamp instead of now")
@click.pass_context
def status(ctx: click.Context, identity: str | None, at: int | None):
    """
    Show ledger totals, or the state of one identity.

    Example:
        crossvest status --identity 5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY
    """
    target = _parse_identity_option(identity, "--identity") if identity else None
    try:
        with _open_store(ctx) as store:
            ledger = store.load(ctx.obj["ledger_id"])
    except LedgerError as exc:
        _handle_cli_error(exc)
        return

    if target is None:
        data = {
            "ledger_id": ctx.obj["ledger_id"],
            "start": ledger.start,
            "duration": ledger.duration,
            "end": ledger.end,
            "refund_policy": ledger.refund_policy.value,
            "beneficiaries": ledger.beneficiary_count(),
            "donors": ledger.donor_count(),
            "total_allocated": ledger.total_allocated(),
            "total_donated": ledger.total_donated(),
            "total_released": ledger.total_released(),
            "available_funds": ledger.available_funds(),
        }
    else:
        data = {
            "identity": ledger_key(target),
            "allocated": ledger.allocated_amount(target),
            "released": ledger.released_amount(target),
            "vested": ledger.vested_amount(target, now=at),
            "releasable": ledger.releasable(target, now=at),
            "contribution": ledger.contribution(target),
            "refunded": ledger.refunded(target),
            "refundable": ledger.refundable(target),
        }

    if ctx.obj.get("json_output"):
        _emit_json(data)
        return

    table = Table(show_header=False, box=box.ROUNDED)
    for key, value in data.items():
        table.add_row(f"[bold cyan]{key.replace('_', ' ').title()}", str(value))
    title = "Ledger Status" if target is None else "Identity Status"
    console.print(Panel(table, title=f"[bold green]{title}", border_style="green"))


@click.command("translate")
@click.argument("address")
@click.option("--ss58-format", default=config.SS58_FORMAT, type=click.IntRange(0, 16383), show_default=True)
@click.pass_context
def translate(ctx: click.Context, address: str, ss58_format: int):
    """Show every representation of an identity."""
    try:
        identity = parse_identity(address)
        data: dict[str, Any] = {"ledger_key": ledger_key(identity)}
        if identity.is_native:
            data.update(
                {
                    "native": str(identity.native),
                    "public_key": "0x" + identity.public_key.hex(),
                    "ss58": identity.to_ss58(ss58_format),
                    "evm": translate_native_to_evm(identity).evm,
                }
            )
        else:
            data["evm"] = identity.evm
    except LedgerError as exc:
        _handle_cli_error(exc)
        return

    if ctx.obj.get("json_output"):
        _emit_json(data)
        return

    table = Table(show_header=False, box=box.ROUNDED)
    for key, value in data.items():
        table.add_row(f"[bold cyan]{key.replace('_', ' ').title()}", value)
    console.print(table)


COMMANDS = [classify, deploy, register, donate, release, refund, status, translate]
