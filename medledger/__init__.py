"""
Ledger-anchored medical record access: custodial patient wallets,
time-bounded permission grants and encrypted record lifecycle.
"""

from medledger.config import Settings
from medledger.services import Services, build_services

__version__ = "0.1.0"

__all__ = ["Settings", "Services", "build_services"]
