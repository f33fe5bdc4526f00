"""
Cross-chain identity translation.

A beneficiary or donor is a ``DualIdentity``: exactly one of an EVM-style
20-byte address or a native 32-byte public key (held as a 256-bit integer).
The native chain exposes every public key to the EVM as the first 20 bytes
of the key, so a native identity and its translated EVM identity share one
ledger key and always address the same ledger record.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Union

from . import ss58
from .address_checksum import ZERO_ADDRESS, normalize_address, to_checksum_address
from .ledger_exceptions import InvalidAddressFormat

logger = logging.getLogger(__name__)

PUBLIC_KEY_LENGTH = 32
EVM_ADDRESS_LENGTH = 20
UINT256_MAX = 2**256 - 1

PublicKeyLike = Union[bytes, bytearray, str, int]


def coerce_public_key(value: PublicKeyLike) -> bytes:
    """
    Normalize any accepted public key representation to 32 raw bytes.

    Accepts raw bytes, a ``0x``-prefixed 64-digit hex string, an SS58
    address, or the integer form used by the native representation.

    Raises:
        InvalidAddressFormat: If the value cannot be a 32-byte public key
    """
    if isinstance(value, bool):
        raise InvalidAddressFormat("Public key cannot be a boolean")

    if isinstance(value, int):
        if not 0 < value <= UINT256_MAX:
            raise InvalidAddressFormat(
                "Native public key integer must be in (0, 2**256)",
                details={"value": value},
            )
        return value.to_bytes(PUBLIC_KEY_LENGTH, "big")

    if isinstance(value, (bytes, bytearray)):
        if len(value) != PUBLIC_KEY_LENGTH:
            raise InvalidAddressFormat(
                f"Public key must be {PUBLIC_KEY_LENGTH} bytes, got {len(value)}"
            )
        return bytes(value)

    if isinstance(value, str):
        if value[:2].lower() == "0x":
            hex_part = value[2:]
            if len(hex_part) != PUBLIC_KEY_LENGTH * 2:
                raise InvalidAddressFormat(
                    f"Public key hex must be {PUBLIC_KEY_LENGTH * 2} characters, got {len(hex_part)}"
                )
            try:
                return bytes.fromhex(hex_part)
            except ValueError as exc:
                raise InvalidAddressFormat(f"Invalid hex characters in public key: {value}") from exc
        return ss58.decode(value)

    raise InvalidAddressFormat(f"Unsupported public key type: {type(value).__name__}")


def to_canonical_evm(public_key: PublicKeyLike) -> str:
    """
    Derive the EVM address of a native public key.

    The address is the first 20 bytes of the public key, EIP-55 checksummed.
    """
    raw = coerce_public_key(public_key)
    return to_checksum_address(raw[:EVM_ADDRESS_LENGTH])


@dataclass(frozen=True)
class DualIdentity:
    """
    Tagged identity with exactly one active representation.

    ``evm`` is a checksummed 20-byte address (zero address when inactive);
    ``native`` is the public key as an integer (0 when inactive).
    """

    evm: str = ZERO_ADDRESS
    native: int = 0

    def __post_init__(self) -> None:
        if isinstance(self.native, bool) or not isinstance(self.native, int):
            raise InvalidAddressFormat("Native identity must be an integer")
        if not 0 <= self.native <= UINT256_MAX:
            raise InvalidAddressFormat("Native identity out of 256-bit range")

        evm = normalize_address(self.evm)
        object.__setattr__(self, "evm", evm)

        has_evm = evm != ZERO_ADDRESS
        has_native = self.native != 0
        if has_evm == has_native:
            raise InvalidAddressFormat(
                "Dual identity must have exactly one non-zero representation",
                details={"evm": evm, "native": hex(self.native)},
            )

    @property
    def is_native(self) -> bool:
        return self.native != 0

    @property
    def is_evm(self) -> bool:
        return self.native == 0

    @property
    def public_key(self) -> bytes:
        if not self.is_native:
            raise InvalidAddressFormat("EVM identity has no native public key")
        return self.native.to_bytes(PUBLIC_KEY_LENGTH, "big")

    @classmethod
    def from_evm(cls, address: str) -> "DualIdentity":
        return cls(evm=address)

    @classmethod
    def from_native(cls, public_key: PublicKeyLike) -> "DualIdentity":
        return to_dual_identity(public_key)

    def to_ss58(self, ss58_format: int = 42) -> str:
        return ss58.encode(self.public_key, ss58_format)

    def to_dict(self) -> Dict[str, Any]:
        return {"eth": self.evm, "sub": hex(self.native)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DualIdentity":
        native = data.get("sub", 0)
        if isinstance(native, str):
            native = int(native, 16) if native[:2].lower() == "0x" else int(native)
        return cls(evm=data.get("eth", ZERO_ADDRESS), native=native)

    def __str__(self) -> str:
        if self.is_native:
            return f"native:{self.native:064x}"
        return self.evm


def to_dual_identity(public_key: PublicKeyLike) -> DualIdentity:
    """Wrap a public key as the native variant with a zeroed EVM field."""
    raw = coerce_public_key(public_key)
    return DualIdentity(native=int.from_bytes(raw, "big"))


def translate_native_to_evm(identity: DualIdentity) -> DualIdentity:
    """
    Convert a native identity to its EVM variant.

    Raises:
        InvalidAddressFormat: If ``identity`` is not the native variant
    """
    if not identity.is_native:
        raise InvalidAddressFormat(
            "Native part of the address cannot be zero",
            details={"evm": identity.evm},
        )
    return DualIdentity(evm=to_canonical_evm(identity.public_key))


def ledger_key(identity: DualIdentity) -> str:
    """Canonical lowercase EVM address keying every ledger table."""
    if identity.is_native:
        return "0x" + identity.public_key[:EVM_ADDRESS_LENGTH].hex()
    return identity.evm.lower()


def same_identity(a: DualIdentity, b: DualIdentity) -> bool:
    return ledger_key(a) == ledger_key(b)


def parse_identity(text: str) -> DualIdentity:
    """
    Parse a user-supplied identity.

    ``0x`` + 40 hex digits is an EVM address, ``0x`` + 64 hex digits is a
    native public key, anything else is decoded as an SS58 address.
    """
    text = text.strip()
    if text[:2].lower() == "0x" and len(text) == 2 + EVM_ADDRESS_LENGTH * 2:
        return DualIdentity.from_evm(text)
    return to_dual_identity(text)


class IdentityBook:
    """
    Reverse index from ledger keys to the native identities behind them.

    EVM addresses cannot be turned back into public keys, so the book
    remembers every native identity it is shown.
    """

    def __init__(self) -> None:
        self._natives: Dict[str, int] = {}

    def remember(self, identity: DualIdentity) -> str:
        key = ledger_key(identity)
        if identity.is_native:
            known = self._natives.get(key)
            if known is not None and known != identity.native:
                # Two public keys sharing a 20-byte prefix; keep the first seen
                logger.warning(
                    "Ledger key collision between native identities",
                    extra={"event": "identity.collision", "key": key},
                )
            else:
                self._natives[key] = identity.native
        return key

    def resolve(self, key_or_identity: str | DualIdentity) -> DualIdentity:
        """Return the native identity behind a key, or the EVM identity if unknown."""
        if isinstance(key_or_identity, DualIdentity):
            key = ledger_key(key_or_identity)
        else:
            key = key_or_identity.lower()
        native = self._natives.get(key)
        if native is not None:
            return DualIdentity(native=native)
        return DualIdentity(evm=key)

    def __contains__(self, key: str) -> bool:
        return key.lower() in self._natives

    def __len__(self) -> int:
        return len(self._natives)

    def to_dict(self) -> Dict[str, str]:
        return {key: hex(native) for key, native in self._natives.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "IdentityBook":
        book = cls()
        for key, native in data.items():
            book._natives[key.lower()] = int(native, 16)
        return book

    def snapshot(self) -> Dict[str, int]:
        return dict(self._natives)

    def restore(self, snapshot: Dict[str, int]) -> None:
        self._natives = dict(snapshot)
