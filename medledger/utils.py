"""
Helpers for ledger addresses and timestamps.
"""

import datetime
from typing import List, Union

from web3 import Web3

from medledger.constants import ERRORS
from medledger.errors import ValidationFailure


def checksum_address(address: str) -> str:
    """
    Normalize a ledger address to its checksummed form.

    Args:
        address: Hex address, any casing

    Returns:
        str: The checksummed address

    Raises:
        ValidationFailure: If the address is malformed
    """
    if not isinstance(address, str) or not Web3.is_address(address):
        raise ValidationFailure(f"{ERRORS['INVALID_ADDRESS']}: {address}")
    return Web3.to_checksum_address(address)


def checksum_addresses(addresses) -> List[str]:
    return [checksum_address(a) for a in addresses or []]


def to_ledger_id(value: Union[int, str], name: str = "id") -> int:
    """
    Validate a ledger-assigned identifier supplied by a caller.

    Raises:
        ValidationFailure: Unless the value is a non-negative integer (or its decimal string)
    """
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValidationFailure(f"Invalid {name}: {value!r}")
    try:
        ledger_id = int(value)
    except ValueError:
        raise ValidationFailure(f"Invalid {name}: {value!r}")
    if ledger_id < 0:
        raise ValidationFailure(f"Invalid {name}: {value!r}")
    return ledger_id


def to_unix_timestamp(value: Union[int, float, datetime.datetime]) -> int:
    """Convert a datetime (naive values are taken as UTC) or unix seconds to unix seconds"""
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return int(value.timestamp())
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationFailure(f"Invalid timestamp: {value!r}")
    return int(value)


def format_timestamp(timestamp: int) -> str:
    """Format unix seconds as an ISO-8601 UTC string"""
    return datetime.datetime.fromtimestamp(timestamp, tz=datetime.timezone.utc).isoformat()
