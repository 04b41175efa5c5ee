"""
Constants for the medical ledger platform.

This module defines the small-integer enums exchanged with the ledger
contracts, the gas limit of each contract call and the standard error
messages returned to callers.
"""

from enum import IntEnum


class UserRole(IntEnum):
    """Participant roles as encoded by the access-control contract"""
    PATIENT = 0
    DOCTOR = 1
    ADMIN = 2
    NURSE = 3
    PHARMACIST = 4


class RecordType(IntEnum):
    """Kinds of medical record"""
    CONSULTATION = 0
    PRESCRIPTION = 1
    TEST_RESULT = 2
    SURGERY = 3
    VACCINATION = 4
    EMERGENCY = 5
    FOLLOW_UP = 6
    DISCHARGE_SUMMARY = 7


class RecordStatus(IntEnum):
    """Lifecycle status of a medical record"""
    DRAFT = 0
    FINALIZED = 1
    AMENDED = 2
    CANCELLED = 3


# Actions a permission grant can cover
ACTIONS = {
    "READ": "READ",
    "WRITE": "WRITE",
    "AMEND": "AMEND",
    "SHARE": "SHARE",
}

# Gas limits per contract call
DEFAULT_GAS_LIMIT = 100000
PATIENT_REGISTRATION_GAS = 200000
AUTO_SIGN_GAS = 200000
USER_REGISTRATION_GAS = 120000
PERMISSION_GAS = 150000
MEDICAL_RECORD_GAS = 200000
AMENDMENT_GAS = 150000
VALUE_TRANSFER_GAS = 21000

# Minimum length of an amendment justification
MIN_AMENDMENT_REASON_LENGTH = 10

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Default JSON-RPC endpoints per network selector
NETWORK_RPC_URLS = {
    "mainnet": "https://ethereum-rpc.publicnode.com",
    "testnet": "https://ethereum-sepolia.publicnode.com",
    "local": "http://127.0.0.1:8545",
}

# Standard error messages
ERRORS = {
    "MISSING_CONTRACT": "Contract address missing from configuration",
    "INVALID_ADDRESS": "Invalid ledger address",
    "TRANSACTION_REVERTED": "Transaction reverted by the ledger",
    "PERMISSION_DENIED": "Permission denied for this action",
    "PATIENT_NOT_FOUND": "Patient not found",
    "USER_NOT_FOUND": "User not found",
    "RECORD_NOT_FOUND": "Medical record not found",
    "PERMISSION_NOT_FOUND": "Permission not found",
    "WALLET_NOT_FOUND": "Custodial wallet not found",
    "MISSING_EVENT": "Receipt carried no {event} event",
}
