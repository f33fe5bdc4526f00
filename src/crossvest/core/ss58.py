"""
SS58 address codec for native-chain public keys.

An SS58 address is ``base58(prefix || public_key || checksum)`` where
``prefix`` is the one- or two-byte network identifier and ``checksum`` is the
first two bytes of ``blake2b-512(b"SS58PRE" || prefix || public_key)``.
"""

from __future__ import annotations

import hashlib

import base58

from .ledger_exceptions import InvalidAddressFormat

SS58_PREFIX = b"SS58PRE"
PUBLIC_KEY_LENGTH = 32
CHECKSUM_LENGTH = 2
MAX_FORMAT = 16383
# Formats 46 and 47 are reserved by the SS58 registry
RESERVED_FORMATS = frozenset({46, 47})


def _checksum(data: bytes) -> bytes:
    return hashlib.blake2b(SS58_PREFIX + data, digest_size=64).digest()[:CHECKSUM_LENGTH]


def _encode_prefix(ss58_format: int) -> bytes:
    if ss58_format < 64:
        return bytes([ss58_format])
    first = ((ss58_format & 0b0000_0000_1111_1100) >> 2) | 0b0100_0000
    second = (ss58_format >> 8) | ((ss58_format & 0b0000_0000_0000_0011) << 6)
    return bytes([first, second])


def _decode_prefix(raw: bytes) -> tuple[int, int]:
    """Return ``(ss58_format, prefix_length)``."""
    if raw[0] & 0b0100_0000:
        lower = ((raw[0] & 0b0011_1111) << 2) | (raw[1] >> 6)
        upper = raw[1] & 0b0011_1111
        return lower | (upper << 8), 2
    return raw[0], 1


def encode(public_key: bytes, ss58_format: int = 42) -> str:
    """
    Encode a 32-byte public key as an SS58 address.

    Raises:
        InvalidAddressFormat: If the key length or network format is invalid
    """
    if len(public_key) != PUBLIC_KEY_LENGTH:
        raise InvalidAddressFormat(
            f"Public key must be {PUBLIC_KEY_LENGTH} bytes, got {len(public_key)}"
        )
    if not 0 <= ss58_format <= MAX_FORMAT or ss58_format in RESERVED_FORMATS:
        raise InvalidAddressFormat(f"Unsupported SS58 format: {ss58_format}")

    payload = _encode_prefix(ss58_format) + bytes(public_key)
    return base58.b58encode(payload + _checksum(payload)).decode("ascii")


def decode_with_format(address: str) -> tuple[bytes, int]:
    """
    Decode an SS58 address into its public key and network format.

    Raises:
        InvalidAddressFormat: On bad base58, bad length or bad checksum
    """
    try:
        raw = base58.b58decode(address)
    except ValueError as exc:
        raise InvalidAddressFormat(f"Invalid base58 string: {exc}") from exc

    if len(raw) < 2:
        raise InvalidAddressFormat("SS58 address too short", details={"address": address})

    ss58_format, prefix_length = _decode_prefix(raw)
    expected_length = prefix_length + PUBLIC_KEY_LENGTH + CHECKSUM_LENGTH
    if len(raw) != expected_length:
        raise InvalidAddressFormat(
            f"SS58 address decodes to {len(raw)} bytes, expected {expected_length}",
            details={"address": address},
        )

    body, checksum = raw[:-CHECKSUM_LENGTH], raw[-CHECKSUM_LENGTH:]
    if _checksum(body) != checksum:
        raise InvalidAddressFormat("Invalid SS58 checksum", details={"address": address})

    return body[prefix_length:], ss58_format


def decode(address: str) -> bytes:
    """Decode an SS58 address into its 32-byte public key."""
    public_key, _ = decode_with_format(address)
    return public_key


def is_valid(address: str) -> bool:
    try:
        decode_with_format(address)
    except InvalidAddressFormat:
        return False
    return True
