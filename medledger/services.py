"""
Explicit wiring of the ledger gateway, the codec and the three managers.

One gateway (one ledger session) is created per process and handed to
every manager; ``Services.close`` releases it exactly once.
"""

import logging
from dataclasses import dataclass

from medledger.access_control import AccessControlService
from medledger.crypto.aes import PayloadCipher
from medledger.crypto.key_manager import KeyVault
from medledger.gateway import LedgerGateway
from medledger.identity import PatientIdentityService
from medledger.patient_registry import PatientRegistry
from medledger.records import MedicalRecordsService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: object
    gateway: object
    cipher: PayloadCipher
    identity: PatientIdentityService
    access_control: AccessControlService
    records: MedicalRecordsService

    def close(self):
        self.gateway.close()


def build_services(settings, gateway=None):
    """
    Construct every component from settings.

    Args:
        settings: medledger.config.Settings
        gateway: Optional pre-built gateway (e.g. a test double)

    Returns:
        Services

    Raises:
        PreconditionFailure: If credentials or secrets are missing
    """
    if gateway is None:
        gateway = LedgerGateway.from_settings(settings)

    cipher = PayloadCipher(settings.encryption_key)
    key_vault = KeyVault(
        settings.keystore_dir,
        settings.keystore_passphrase,
        iterations=settings.keystore_kdf_iterations,
    )
    registry = PatientRegistry(settings.registry_file)

    services = Services(
        settings=settings,
        gateway=gateway,
        cipher=cipher,
        identity=PatientIdentityService(
            gateway,
            cipher,
            key_vault,
            registry,
            settings.patient_identity_contract,
            wallet_funding_wei=settings.wallet_funding_wei,
        ),
        access_control=AccessControlService(gateway, settings.access_control_contract),
        records=MedicalRecordsService(gateway, cipher, settings.medical_records_contract),
    )
    logger.info("Medical ledger services initialized")
    return services
