from __future__ import annotations

"""
EIP-55 Mixed-Case Address Checksums

Provides error detection for 20-byte EVM addresses using keccak256-based
mixed-case checksumming (EIP-55).

Address Format:
- Raw:      0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed
- Checksum: 0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed
"""

from Crypto.Hash import keccak

from .ledger_exceptions import InvalidAddressFormat

ZERO_ADDRESS = "0x" + "0" * 40


def keccak256(data: bytes) -> bytes:
    """Compute keccak256 hash (same as Ethereum)."""
    k = keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


def _split_hex(address: str) -> str:
    if not isinstance(address, str):
        raise InvalidAddressFormat(f"Address must be a string, got {type(address).__name__}")
    if address[:2].lower() != "0x":
        raise InvalidAddressFormat(f"Invalid address prefix: {address[:2]}")

    hex_part = address[2:]
    if len(hex_part) != 40:
        raise InvalidAddressFormat(
            f"Address hex part must be 40 characters, got {len(hex_part)}",
            details={"address": address},
        )
    try:
        int(hex_part, 16)
    except ValueError:
        raise InvalidAddressFormat(f"Invalid hex characters in address: {hex_part}")
    return hex_part


def to_checksum_address(address: str | bytes) -> str:
    """
    Convert an EVM address to checksummed format (EIP-55).

    Args:
        address: ``0x`` hex address (any case) or 20 raw bytes

    Returns:
        Checksummed address with mixed-case hex

    Raises:
        InvalidAddressFormat: If address format is invalid

    Example:
        >>> to_checksum_address("0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed")
        '0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed'
    """
    if isinstance(address, (bytes, bytearray)):
        if len(address) != 20:
            raise InvalidAddressFormat(f"EVM address must be 20 bytes, got {len(address)}")
        hex_lower = bytes(address).hex()
    else:
        hex_lower = _split_hex(address).lower()

    address_hash = keccak256(hex_lower.encode("ascii")).hex()

    checksummed = []
    for i, char in enumerate(hex_lower):
        if char in "0123456789":
            checksummed.append(char)
        elif int(address_hash[i], 16) >= 8:
            checksummed.append(char.upper())
        else:
            checksummed.append(char)

    return "0x" + "".join(checksummed)


def is_checksum_valid(address: str) -> bool:
    """
    Verify if address has valid checksum.

    Returns:
        True if checksum is valid or address is all lowercase/uppercase
        False if checksum is invalid or the address is malformed
    """
    try:
        hex_part = _split_hex(address)
    except InvalidAddressFormat:
        return False

    # All lowercase or all uppercase is valid (no checksum applied)
    if hex_part == hex_part.lower() or hex_part == hex_part.upper():
        return True

    return address == to_checksum_address(address)


def normalize_address(address: str) -> str:
    """
    Normalize address to checksummed format.

    Mixed-case input must carry a valid checksum.

    Raises:
        InvalidAddressFormat: If address is malformed or its checksum is wrong
    """
    if not is_checksum_valid(address):
        _split_hex(address)
        expected = to_checksum_address(address)
        raise InvalidAddressFormat(
            f"Invalid checksum. Did you mean {expected}?",
            details={"address": address, "expected": expected},
        )
    return to_checksum_address(address)


def address_to_bytes(address: str) -> bytes:
    """Return the 20 raw bytes of an EVM address."""
    return bytes.fromhex(_split_hex(address))
