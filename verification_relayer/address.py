"""
EVM address normalization.

Every address entering the relayer (event logs, HTTP bodies, CLI arguments,
configuration) goes through normalize_address() so that dedup sets and map
keys only ever hold the EIP-55 checksum form.
"""

from typing import Any

from eth_utils import is_hex_address
from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class InvalidAddressError(ValueError):
    """Value is not a 20-byte hex address."""


def normalize_address(value: Any) -> str:
    """
    Return the checksum form of an EVM address.

    Accepts any casing, with or without the 0x prefix.

    Raises:
        InvalidAddressError: if the value is not a 20-byte hex address
    """
    if not isinstance(value, str):
        raise InvalidAddressError(f"Address must be a string, got {type(value).__name__}")

    candidate = value.strip()
    if not candidate.lower().startswith("0x"):
        candidate = "0x" + candidate

    if not is_hex_address(candidate):
        raise InvalidAddressError(f"Invalid EVM address: {value!r}")

    return Web3.to_checksum_address(candidate.lower())


def is_zero_address(value: str) -> bool:
    """Check if an address is the zero address (any casing)."""
    try:
        return normalize_address(value) == ZERO_ADDRESS
    except InvalidAddressError:
        return False
