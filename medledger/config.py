"""
Configuration for the medical ledger platform.

Settings are read from the environment (and from a ``.env`` file when
present). Secrets are held as ``SecretStr`` so they never show up in
reprs or logs.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, SecretStr

from medledger.constants import NETWORK_RPC_URLS

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class Settings(BaseModel):
    """Runtime settings consumed by the services"""
    ledger_network: str = "testnet"
    rpc_url: str = ""
    operator_private_key: Optional[SecretStr] = None
    patient_identity_contract: str = ""
    access_control_contract: str = ""
    medical_records_contract: str = ""
    encryption_key: Optional[SecretStr] = None
    keystore_passphrase: Optional[SecretStr] = None
    keystore_dir: str = "secure_keys"
    keystore_kdf_iterations: int = 262144
    registry_file: str = os.path.join("local_storage", "patients.json")
    query_timeout: float = 5.0
    transaction_timeout: float = 120.0
    wallet_funding_wei: int = 0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file=None):
        """Build settings from environment variables

        Args:
            env_file: Optional path to a .env file (defaults to ./.env)

        Returns:
            Settings: The loaded settings
        """
        load_dotenv(env_file)

        network = os.getenv("LEDGER_NETWORK", "testnet")
        values = {
            "ledger_network": network,
            "rpc_url": os.getenv("LEDGER_RPC_URL", NETWORK_RPC_URLS.get(network, "")),
            "operator_private_key": _secret("OPERATOR_PRIVATE_KEY"),
            "patient_identity_contract": os.getenv("PATIENT_IDENTITY_CONTRACT", ""),
            "access_control_contract": os.getenv("ACCESS_CONTROL_CONTRACT", ""),
            "medical_records_contract": os.getenv("MEDICAL_RECORDS_CONTRACT", ""),
            "encryption_key": _secret("ENCRYPTION_KEY"),
            "keystore_passphrase": _secret("KEYSTORE_PASSPHRASE"),
            "log_level": os.getenv("LOG_LEVEL", "INFO"),
        }

        # Optional overrides; pydantic coerces the strings
        optional = {
            "keystore_dir": "KEYSTORE_DIR",
            "keystore_kdf_iterations": "KEYSTORE_KDF_ITERATIONS",
            "registry_file": "REGISTRY_FILE",
            "query_timeout": "QUERY_TIMEOUT",
            "transaction_timeout": "TRANSACTION_TIMEOUT",
            "wallet_funding_wei": "WALLET_FUNDING_WEI",
        }
        for field, variable in optional.items():
            if os.getenv(variable):
                values[field] = os.getenv(variable)

        return cls(**values)

    def missing(self):
        """Names of required settings that are not configured"""
        required = {
            "LEDGER_RPC_URL": self.rpc_url,
            "OPERATOR_PRIVATE_KEY": self.operator_private_key,
            "PATIENT_IDENTITY_CONTRACT": self.patient_identity_contract,
            "ACCESS_CONTROL_CONTRACT": self.access_control_contract,
            "MEDICAL_RECORDS_CONTRACT": self.medical_records_contract,
            "ENCRYPTION_KEY": self.encryption_key,
            "KEYSTORE_PASSPHRASE": self.keystore_passphrase,
        }
        return [name for name, value in required.items() if not value]


def _secret(variable):
    value = os.getenv(variable)
    return SecretStr(value) if value else None


def configure_logging(level="INFO"):
    """Setup logging for command line entry points"""
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format=LOG_FORMAT)
