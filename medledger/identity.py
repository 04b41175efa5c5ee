"""
Identity and custodial key manager.

Registers patient identities on the ledger and silently provisions a
wallet for each of them ("invisible wallet"). The platform keeps the
wallet's key in the key vault and signs patient-attributed operations
with it, so patients never need a signer of their own.
"""

import logging
from typing import Optional

from eth_account import Account

from medledger.constants import (
    AUTO_SIGN_GAS,
    DEFAULT_GAS_LIMIT,
    ERRORS,
    PATIENT_REGISTRATION_GAS,
)
from medledger.errors import LedgerRejection, NotFound, PersistenceFailure
from medledger.models import PatientIdentity, WalletRecord
from medledger.results import event_arg, ledger_operation, raise_for_result, success_result
from medledger.utils import checksum_address, to_ledger_id

logger = logging.getLogger(__name__)


class PatientIdentityService:
    """Patient identities and their custodial wallets"""

    def __init__(self, gateway, cipher, key_vault, registry, contract_ref, wallet_funding_wei=0):
        """
        Args:
            gateway: LedgerGateway used for every ledger round trip
            cipher: PayloadCipher encrypting personal data
            key_vault: KeyVault holding the custodial private keys
            registry: PatientRegistry holding the wallet profiles
            contract_ref: Address of the patient identity contract
            wallet_funding_wei: Gas money sent to each new wallet (0 disables funding)
        """
        self.gateway = gateway
        self.cipher = cipher
        self.key_vault = key_vault
        self.registry = registry
        self.contract_ref = contract_ref
        self.wallet_funding_wei = wallet_funding_wei

    @ledger_operation("register patient")
    def register(self, personal_data, metadata_hash=None):
        """
        Register a new patient and provision their custodial wallet.

        The wallet key is written locally only after the ledger confirmed
        the registration.

        Args:
            personal_data: Patient personal data (dict); stored encrypted
            metadata_hash: Optional hash of off-chain metadata

        Returns:
            dict: {success, transaction_id, patient_id} or a failure
        """
        wallet = Account.create()
        encrypted_data = self.cipher.encrypt(personal_data)

        result = self.gateway.execute(
            self.contract_ref,
            "registerPatient",
            [encrypted_data, wallet.address, metadata_hash or ""],
            PATIENT_REGISTRATION_GAS,
        )
        raise_for_result(result)
        transaction_id = result["transaction_id"]

        patient_id = event_arg(result, "PatientRegistered", "patientId")
        if patient_id is None:
            raise LedgerRejection(
                ERRORS["MISSING_EVENT"].format(event="PatientRegistered"),
                transaction_id=transaction_id,
            )

        self._persist_wallet(int(patient_id), wallet, personal_data, transaction_id)
        logger.info(f"Patient {patient_id} registered: {transaction_id}")

        if self.wallet_funding_wei:
            funding = self.gateway.fund_account(wallet.address, self.wallet_funding_wei)
            if not funding["success"]:
                logger.warning(f"Could not fund wallet of patient {patient_id}: {funding['error']}")

        return success_result(
            transaction_id=transaction_id,
            patient_id=int(patient_id),
            message="Patient registered successfully",
        )

    def _persist_wallet(self, patient_id, wallet, personal_data, transaction_id):
        profile = personal_data if isinstance(personal_data, dict) else {}
        try:
            self.key_vault.store_key(patient_id, wallet.key)
            self.registry.register_patient(
                patient_id,
                wallet.address,
                name=profile.get("name"),
                birthdate=profile.get("birthdate"),
                ledger_account_id=wallet.address,
            )
        except Exception as e:
            # The identity exists on the ledger but this node cannot sign for it
            logger.critical(
                f"Patient {patient_id} registered on ledger ({transaction_id}) "
                f"but the wallet could not be persisted: {e}"
            )
            raise PersistenceFailure(
                f"Patient registered on ledger but wallet could not be persisted: {e}",
                transaction_id=transaction_id,
                patient_id=patient_id,
            )

    @ledger_operation("sign transaction with patient wallet")
    def auto_sign(self, patient_id, contract_ref, function, params, gas_limit=AUTO_SIGN_GAS):
        """
        Sign and submit a transaction with the patient's custodial wallet.

        Returns:
            dict: {success, transaction_id} or a failure
        """
        patient_id = to_ledger_id(patient_id, "patient id")
        private_key = self.key_vault.load_key(patient_id)
        if private_key is None:
            raise NotFound(f"{ERRORS['WALLET_NOT_FOUND']} for patient {patient_id}")

        result = self.gateway.execute(contract_ref, function, params, gas_limit, signer=private_key)
        raise_for_result(result)

        logger.info(f"Transaction auto-signed for patient {patient_id}: {result['transaction_id']}")
        return success_result(transaction_id=result["transaction_id"], status=result.get("status"))

    @ledger_operation("update patient data")
    def update_data(self, patient_id, new_data, new_metadata_hash=None):
        """Replace the encrypted personal data of a patient, signed by their wallet"""
        encrypted_data = self.cipher.encrypt(new_data)
        return self.auto_sign(
            patient_id,
            self.contract_ref,
            "updatePatientData",
            [to_ledger_id(patient_id, "patient id"), encrypted_data, new_metadata_hash or ""],
        )

    @ledger_operation("grant doctor access")
    def grant_access(self, patient_id, doctor_address):
        """Coarse access toggle signed by the operator"""
        return self._toggle_access("grantAccess", patient_id, doctor_address)

    @ledger_operation("revoke doctor access")
    def revoke_access(self, patient_id, doctor_address):
        return self._toggle_access("revokeAccess", patient_id, doctor_address)

    def _toggle_access(self, function, patient_id, doctor_address):
        result = self.gateway.execute(
            self.contract_ref,
            function,
            [to_ledger_id(patient_id, "patient id"), checksum_address(doctor_address)],
            DEFAULT_GAS_LIMIT,
        )
        raise_for_result(result)
        logger.info(f"{function} for patient {patient_id} and {doctor_address}: {result['transaction_id']}")
        return success_result(transaction_id=result["transaction_id"])

    @ledger_operation("get patient")
    def get_patient(self, patient_id):
        """
        Read a patient identity from the ledger.

        Returns:
            dict: {success, patient: PatientIdentity} or a failure
        """
        patient_id = to_ledger_id(patient_id, "patient id")
        result = raise_for_result(self.gateway.query(self.contract_ref, "getPatient", [patient_id]))
        patient = parse_patient(result["result"])
        if patient.patient_id == 0:
            raise NotFound(f"{ERRORS['PATIENT_NOT_FOUND']}: {patient_id}")
        return success_result(patient=patient)

    def get_wallet(self, patient_id) -> Optional[WalletRecord]:
        """Join the local profile and the vault key of a patient's wallet"""
        profile = self.registry.get_patient(patient_id)
        if profile is None:
            return None
        private_key = self.key_vault.load_key(patient_id)
        if private_key is None:
            return None
        return WalletRecord(
            patient_id=profile["patient_id"],
            name=profile.get("name"),
            birthdate=profile.get("birthdate"),
            wallet_address=profile["wallet_address"],
            private_key=private_key,
            ledger_account_id=profile["ledger_account_id"],
        )


def parse_patient(raw) -> PatientIdentity:
    """Parse the getPatient struct returned by the identity contract"""
    return PatientIdentity(
        patient_id=raw[0],
        encrypted_personal_data=raw[1],
        wallet_address=raw[2],
        is_active=raw[3],
        creation_date=raw[4],
        metadata_hash=raw[5],
    )
