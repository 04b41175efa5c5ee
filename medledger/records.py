"""
Medical record lifecycle manager.

Records are created encrypted, read back as metadata only, and move one
way through their lifecycle:

    DRAFT --finalize--> FINALIZED --amend--> AMENDED
    any non-cancelled status --cancel--> CANCELLED

Transitions are checked here before anything is submitted to the ledger.
"""

import logging

from medledger.constants import (
    AMENDMENT_GAS,
    DEFAULT_GAS_LIMIT,
    ERRORS,
    MEDICAL_RECORD_GAS,
    MIN_AMENDMENT_REASON_LENGTH,
    RecordStatus,
    RecordType,
)
from medledger.crypto.aes import hash_payload
from medledger.errors import IllegalTransition, LedgerRejection, NotFound, ValidationFailure
from medledger.models import MedicalRecord
from medledger.results import event_arg, ledger_operation, raise_for_result, success_result
from medledger.utils import checksum_address, checksum_addresses, to_ledger_id

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    RecordStatus.DRAFT: {RecordStatus.FINALIZED, RecordStatus.CANCELLED},
    RecordStatus.FINALIZED: {RecordStatus.AMENDED, RecordStatus.CANCELLED},
    RecordStatus.AMENDED: {RecordStatus.CANCELLED},
    RecordStatus.CANCELLED: set(),
}

# Statuses from which amend() may be called; re-amending an amended record is allowed
AMENDABLE_STATUSES = {RecordStatus.FINALIZED, RecordStatus.AMENDED}


def can_transition(current, new):
    """Whether a record may move from one status to another"""
    return RecordStatus(new) in ALLOWED_TRANSITIONS[RecordStatus(current)]


class MedicalRecordsService:
    """Encrypted medical records anchored on the ledger"""

    def __init__(self, gateway, cipher, contract_ref):
        self.gateway = gateway
        self.cipher = cipher
        self.contract_ref = contract_ref

    def _execute(self, function, params, gas_limit):
        result = raise_for_result(self.gateway.execute(self.contract_ref, function, params, gas_limit))
        logger.info(f"{function} confirmed: {result['transaction_id']}")
        return result

    def _load(self, record_id):
        record_id = to_ledger_id(record_id, "record id")
        result = raise_for_result(self.gateway.query(self.contract_ref, "getMedicalRecord", [record_id]))
        record = parse_record(result["result"])
        if record.record_id == 0:
            raise NotFound(f"{ERRORS['RECORD_NOT_FOUND']}: {record_id}")
        return record

    @ledger_operation("create medical record")
    def create(self, patient_id, doctor_address, record_type, medical_data, attachments=None,
               metadata=None, is_emergency=False, authorized_viewers=None):
        """
        Create an encrypted medical record.

        The payload is encrypted and its plaintext hashed before submission;
        only the ciphertext token goes back to the caller.

        Args:
            patient_id: Patient the record belongs to
            doctor_address: Address of the authoring clinician
            record_type: RecordType of the record
            medical_data: Payload (dict) to encrypt
            attachments: Optional list of attachment hashes
            metadata: Optional free-form metadata string
            is_emergency: Whether the record was created in an emergency
            authorized_viewers: Optional addresses allowed to view the record

        Returns:
            dict: {success, transaction_id, record_id, encrypted_data_hash} or a failure
        """
        try:
            record_type = RecordType(record_type)
        except ValueError:
            raise ValidationFailure(f"Invalid record type: {record_type}")

        encrypted_data_hash = self.cipher.encrypt(medical_data)
        original_data_hash = hash_payload(medical_data)

        result = self._execute(
            "createMedicalRecord",
            [
                to_ledger_id(patient_id, "patient id"),
                checksum_address(doctor_address),
                int(record_type),
                encrypted_data_hash,
                original_data_hash,
                list(attachments or []),
                metadata or "",
                bool(is_emergency),
                checksum_addresses(authorized_viewers),
            ],
            MEDICAL_RECORD_GAS,
        )
        record_id = event_arg(result, "MedicalRecordCreated", "recordId")
        if record_id is None:
            raise LedgerRejection(
                ERRORS["MISSING_EVENT"].format(event="MedicalRecordCreated"),
                transaction_id=result["transaction_id"],
            )
        return success_result(
            transaction_id=result["transaction_id"],
            record_id=int(record_id),
            encrypted_data_hash=encrypted_data_hash,
        )

    @ledger_operation("get medical record")
    def get_record(self, record_id):
        """
        Returns:
            dict: {success, record: MedicalRecord} or a failure
        """
        return success_result(record=self._load(record_id))

    @ledger_operation("get patient medical history")
    def get_patient_history(self, patient_id):
        """
        Returns:
            dict: {success, records: [MedicalRecord]} or a failure
        """
        patient_id = to_ledger_id(patient_id, "patient id")
        result = raise_for_result(self.gateway.query(self.contract_ref, "getPatientRecords", [patient_id]))
        return success_result(records=[parse_record(raw) for raw in result["result"]])

    @ledger_operation("update record status")
    def update_status(self, record_id, new_status):
        """
        Move a record to a new status after checking the transition is legal.

        Returns:
            dict: {success, transaction_id} or a failure
        """
        try:
            new_status = RecordStatus(new_status)
        except ValueError:
            raise ValidationFailure(f"Invalid record status: {new_status}")

        record = self._load(record_id)
        if not can_transition(record.status, new_status):
            raise IllegalTransition(record.status, new_status)

        result = self._execute("updateRecordStatus", [record.record_id, int(new_status)], DEFAULT_GAS_LIMIT)
        return success_result(transaction_id=result["transaction_id"])

    @ledger_operation("amend medical record")
    def amend(self, record_id, reason, new_medical_data):
        """
        Amend a finalized record with new data and a mandatory justification.

        The previous ciphertext stays in the ledger history.

        Returns:
            dict: {success, transaction_id, encrypted_data_hash} or a failure
        """
        if not isinstance(reason, str) or len(reason.strip()) < MIN_AMENDMENT_REASON_LENGTH:
            raise ValidationFailure(
                f"Amendment reason must be at least {MIN_AMENDMENT_REASON_LENGTH} characters"
            )

        record = self._load(record_id)
        if record.status not in AMENDABLE_STATUSES:
            raise IllegalTransition(record.status, RecordStatus.AMENDED)

        encrypted_data_hash = self.cipher.encrypt(new_medical_data)
        result = self._execute(
            "amendMedicalRecord",
            [record.record_id, reason.strip(), encrypted_data_hash, hash_payload(new_medical_data)],
            AMENDMENT_GAS,
        )
        return success_result(transaction_id=result["transaction_id"], encrypted_data_hash=encrypted_data_hash)

    @ledger_operation("authorize viewer")
    def authorize_viewer(self, record_id, viewer_address):
        result = self._execute(
            "authorizeViewer",
            [to_ledger_id(record_id, "record id"), checksum_address(viewer_address)],
            DEFAULT_GAS_LIMIT,
        )
        return success_result(transaction_id=result["transaction_id"])


def parse_record(raw) -> MedicalRecord:
    """Parse a MedicalRecord struct returned by the records contract"""
    return MedicalRecord(
        record_id=raw[0],
        patient_id=raw[1],
        doctor_address=raw[2],
        record_type=RecordType(raw[3]),
        status=RecordStatus(raw[4]),
        encrypted_data_hash=raw[5],
        original_data_hash=raw[6],
        attachment_hashes=list(raw[7]),
        authorized_viewers=list(raw[8]),
        is_emergency=raw[9],
        timestamp=raw[10],
        last_modified=raw[11],
    )
