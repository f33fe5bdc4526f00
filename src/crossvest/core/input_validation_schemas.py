from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, conint, field_validator


def _parse_balance(value: Any) -> int:
    # Snapshot balances arrive as JSON numbers, decimal strings or 0x-hex strings
    if isinstance(value, bool):
        raise ValueError("balance cannot be a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip().replace(",", "")
        if text[:2].lower() == "0x":
            return int(text, 16)
        return int(text)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ValueError(f"unsupported balance value: {value!r}")


class AccountDataInput(BaseModel):
    free: conint(ge=0)
    reserved: conint(ge=0) = 0

    @field_validator("free", "reserved", mode="before")
    @classmethod
    def _coerce_balance(cls, value: Any) -> int:
        return _parse_balance(value)


class SnapshotAccountInput(BaseModel):
    data: AccountDataInput


class CohortEntryInput(BaseModel):
    qtz: float = Field(ge=0)
    unq: conint(gt=0)
