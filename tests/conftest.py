import os

import pytest
from pydantic import SecretStr

from medledger.config import Settings
from medledger.services import build_services

from helpers import (
    ACCESS_CONTROL_CONTRACT,
    IDENTITY_CONTRACT,
    MEDICAL_RECORDS_CONTRACT,
    OPERATOR_KEY,
    FakeLedger,
)

TEST_ENCRYPTION_KEY = "8f2b6c1d9e0a4f7b3c5d8e1f2a6b9c0d4e7f1a3b5c8d0e2f4a6b8c1d3e5f7a9b"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        ledger_network="local",
        rpc_url="http://127.0.0.1:8545",
        operator_private_key=SecretStr(OPERATOR_KEY),
        patient_identity_contract=IDENTITY_CONTRACT,
        access_control_contract=ACCESS_CONTROL_CONTRACT,
        medical_records_contract=MEDICAL_RECORDS_CONTRACT,
        encryption_key=SecretStr(TEST_ENCRYPTION_KEY),
        keystore_passphrase=SecretStr("correct horse battery staple"),
        keystore_dir=os.path.join(str(tmp_path), "secure_keys"),
        # Keep keystore encryption fast in tests
        keystore_kdf_iterations=2,
        registry_file=os.path.join(str(tmp_path), "local_storage", "patients.json"),
    )


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def services(settings, ledger):
    services = build_services(settings, gateway=ledger)
    yield services
    services.close()
