"""
Balance snapshot classification.

Splits a native-chain balance snapshot into two cohorts: accounts above
the threshold are vested through the ledger ("contract"), the rest are
paid directly ("airdrop"). Each account's target allocation is its source
balance converted at the exchange rate and rounded up, with a minimum of
one whole unit.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from decimal import ROUND_CEILING, Decimal, localcontext
from pathlib import Path
from typing import Any, Dict, Mapping

from pydantic import ValidationError as PydanticValidationError

from ..core.input_validation_schemas import CohortEntryInput, SnapshotAccountInput
from ..core.ledger_exceptions import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 25
DEFAULT_EXCHANGE_RATE = 25
DEFAULT_DECIMALS = 18

CohortEntry = Dict[str, Any]  # {"qtz": float, "unq": int}
Cohort = Dict[str, CohortEntry]


@dataclass
class Classification:
    contract: Cohort = field(default_factory=dict)
    airdrop: Cohort = field(default_factory=dict)
    less25: int = 0
    contract_unq: int = 0
    airdrop_unq: int = 0

    @property
    def stats(self) -> Dict[str, int]:
        return {
            "less25": self.less25,
            "contractUnq": self.contract_unq,
            "airdropUnq": self.airdrop_unq,
        }


def to_source_units(base_units: int, decimals: int = DEFAULT_DECIMALS) -> Decimal:
    """Exact conversion of a base-unit balance to whole source units."""
    with localcontext() as ctx:
        ctx.prec = 120
        return Decimal(base_units) / (Decimal(10) ** decimals)


def target_allocation(source: Decimal, exchange_rate: int = DEFAULT_EXCHANGE_RATE) -> int:
    if source <= 0:
        return 1
    with localcontext() as ctx:
        ctx.prec = 120
        return int((source / Decimal(exchange_rate)).to_integral_value(rounding=ROUND_CEILING))


def classify_accounts(
    snapshot: Mapping[str, Any],
    threshold: int = DEFAULT_THRESHOLD,
    exchange_rate: int = DEFAULT_EXCHANGE_RATE,
    decimals: int = DEFAULT_DECIMALS,
) -> Classification:
    """
    Classify every account of ``snapshot`` into the contract or airdrop cohort.

    Args:
        snapshot: address -> ``{"data": {"free": ..., "reserved": ...}}``
        threshold: Accounts holding strictly more source units than this
            go to the contract cohort
        exchange_rate: Source units per target unit
        decimals: Decimals of the source balances

    Raises:
        ValidationError: If an account entry is malformed
    """
    if exchange_rate <= 0:
        raise ValidationError("exchange_rate must be positive", details={"exchange_rate": exchange_rate})

    result = Classification()
    for address, raw in snapshot.items():
        try:
            account = SnapshotAccountInput.model_validate(raw)
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Invalid snapshot entry for {address}",
                details={"address": address, "errors": exc.errors(include_url=False)},
            ) from exc

        source = to_source_units(account.data.free + account.data.reserved, decimals)
        target = target_allocation(source, exchange_rate)
        entry = {"qtz": float(source), "unq": target}

        if source < threshold:
            result.less25 += 1

        if source > threshold:
            result.contract[address] = entry
            result.contract_unq += target
        else:
            result.airdrop[address] = entry
            result.airdrop_unq += target

    logger.info(
        "Snapshot classified",
        extra={
            "event": "snapshot.classified",
            "accounts": len(snapshot),
            "contract_accounts": len(result.contract),
            "airdrop_accounts": len(result.airdrop),
            **result.stats,
        },
    )
    return result


def load_snapshot(path: Path | str) -> Dict[str, Any]:
    """Read a snapshot JSON object from ``path``."""
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        raise ValidationError(f"Failed to read or parse snapshot file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValidationError(f"Snapshot file {path} must contain a JSON object")
    return data


def load_cohort(path: Path | str) -> Cohort:
    """Read a cohort file written by ``write_cohorts``."""
    data = load_snapshot(path)
    cohort: Cohort = {}
    for address, raw in data.items():
        try:
            entry = CohortEntryInput.model_validate(raw)
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Invalid cohort entry for {address}",
                details={"address": address, "errors": exc.errors(include_url=False)},
            ) from exc
        cohort[address] = {"qtz": entry.qtz, "unq": entry.unq}
    return cohort


def _write_json(path: Path | str, payload: Any) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(payload), encoding="utf-8")


def write_cohorts(
    result: Classification,
    contract_path: Path | str,
    airdrop_path: Path | str,
    stats_path: Path | str,
) -> None:
    _write_json(contract_path, result.contract)
    _write_json(airdrop_path, result.airdrop)
    _write_json(stats_path, result.stats)
    logger.info(
        "Cohorts written",
        extra={
            "event": "snapshot.written",
            "contract_path": str(contract_path),
            "airdrop_path": str(airdrop_path),
            "stats_path": str(stats_path),
        },
    )
