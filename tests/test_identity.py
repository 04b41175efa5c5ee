import json
import os

from eth_account import Account

from medledger.errors import ErrorKind, PersistenceFailure
from medledger.results import failure_result
from medledger.services import build_services

from helpers import DOCTOR_ADDRESS, IDENTITY_CONTRACT, TEST_PATIENT


def test_register_patient(services, ledger):
    result = services.identity.register(TEST_PATIENT)

    assert result["success"]
    assert result["patient_id"] == 1
    assert result["transaction_id"].startswith("0x")

    wallet = services.identity.get_wallet(1)
    assert wallet is not None
    assert wallet.wallet_address == ledger.patients[1][2]
    assert Account.from_key(wallet.private_key.get_secret_value()).address == wallet.wallet_address
    assert wallet.name == TEST_PATIENT["name"]


def test_personal_data_reaches_ledger_encrypted(services, ledger):
    services.identity.register(TEST_PATIENT)

    stored = ledger.patients[1][1]
    assert TEST_PATIENT["nationalId"] not in stored
    assert json.loads(services.cipher.decrypt(stored)) == TEST_PATIENT


def test_each_patient_gets_a_distinct_wallet(services):
    first = services.identity.register(TEST_PATIENT)
    second = services.identity.register(dict(TEST_PATIENT, name="Marie Curie"))

    assert first["patient_id"] != second["patient_id"]
    first_wallet = services.identity.get_wallet(first["patient_id"])
    second_wallet = services.identity.get_wallet(second["patient_id"])
    assert first_wallet.wallet_address != second_wallet.wallet_address
    assert first_wallet.private_key.get_secret_value() != second_wallet.private_key.get_secret_value()


def test_ledger_failure_persists_nothing(services, ledger):
    ledger.fail_next = failure_result("execution reverted: paused")

    result = services.identity.register(TEST_PATIENT)

    assert not result["success"]
    assert result["error_kind"] == "ledger_rejection"
    assert os.listdir(services.settings.keystore_dir) == []
    assert services.identity.registry.get_all_patient_ids() == []


def test_missing_registration_event(services, ledger):
    ledger.suppress_events = True

    result = services.identity.register(TEST_PATIENT)

    assert not result["success"]
    assert result["error_kind"] == "ledger_rejection"
    assert result["transaction_id"].startswith("0x")
    assert os.listdir(services.settings.keystore_dir) == []


def test_persistence_failure_after_ledger_success(services, ledger, monkeypatch):
    def broken_store(patient_id, private_key):
        raise PersistenceFailure("disk full")

    monkeypatch.setattr(services.identity.key_vault, "store_key", broken_store)

    result = services.identity.register(TEST_PATIENT)

    assert not result["success"]
    assert result["error_kind"] == "persistence_failure"
    assert result["patient_id"] == 1
    assert result["transaction_id"].startswith("0x")
    assert 1 in ledger.patients


def test_wallet_funding(settings, ledger):
    settings = settings.model_copy(update={"wallet_funding_wei": 10 ** 15})
    services = build_services(settings, gateway=ledger)

    services.identity.register(TEST_PATIENT)

    wallet = services.identity.get_wallet(1)
    assert ledger.funded == [(wallet.wallet_address, 10 ** 15)]


def test_get_patient_is_idempotent(services):
    services.identity.register(TEST_PATIENT)

    first = services.identity.get_patient(1)
    second = services.identity.get_patient(1)

    assert first["success"]
    assert first["patient"] == second["patient"]
    assert first["patient"].is_active


def test_get_unknown_patient(services):
    result = services.identity.get_patient(999)

    assert not result["success"]
    assert result["error_kind"] == "not_found"


def test_update_data_is_signed_by_patient_wallet(services, ledger):
    services.identity.register(TEST_PATIENT)
    before = ledger.patients[1][1]

    result = services.identity.update_data(1, dict(TEST_PATIENT, email="jean@example.org"), "meta-v2")

    assert result["success"]
    call = ledger.executed("updatePatientData")[-1]
    assert call[5] == services.identity.get_wallet(1).wallet_address
    assert ledger.patients[1][1] != before
    assert ledger.patients[1][5] == "meta-v2"


def test_auto_sign_without_wallet(services, ledger):
    result = services.identity.auto_sign(42, IDENTITY_CONTRACT, "updatePatientData", [42, "{}", ""])

    assert not result["success"]
    assert result["error_kind"] == "not_found"
    assert ledger.executed("updatePatientData") == []


def test_coarse_access_toggle(services, ledger):
    services.identity.register(TEST_PATIENT)

    assert services.identity.grant_access(1, DOCTOR_ADDRESS)["success"]
    assert (1, DOCTOR_ADDRESS) in ledger.coarse_access

    assert services.identity.revoke_access(1, DOCTOR_ADDRESS)["success"]
    assert (1, DOCTOR_ADDRESS) not in ledger.coarse_access


def test_grant_access_with_invalid_address(services, ledger):
    services.identity.register(TEST_PATIENT)

    result = services.identity.grant_access(1, "not-an-address")

    assert result["error_kind"] == "validation"
    assert ledger.executed("grantAccess") == []


def test_registration_timeout_keeps_transaction_id(services, ledger):
    ledger.fail_next = failure_result("no receipt after 120 seconds", ErrorKind.TIMEOUT, transaction_id="0x" + "cd" * 32)

    result = services.identity.register(TEST_PATIENT)

    assert not result["success"]
    assert result["error_kind"] == "timeout"
    assert result["transaction_id"] == "0x" + "cd" * 32


def test_malformed_patient_id(services, ledger):
    assert services.identity.get_patient("abc")["error_kind"] == "validation"
    assert services.identity.update_data(None, TEST_PATIENT)["error_kind"] == "validation"
    assert ledger.executed("updatePatientData") == []
