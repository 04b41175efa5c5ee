"""
In-memory ledger used by the tests in place of LedgerGateway.

Implements the behaviour of the three deployed contracts behind the same
execute()/query() contract as the real gateway, including receipt events
and revert classification.
"""

import itertools
import time

from eth_account import Account

from medledger.constants import DEFAULT_GAS_LIMIT, RecordStatus, ZERO_ADDRESS
from medledger.errors import ErrorKind
from medledger.gateway import NOT_FOUND_MARKERS
from medledger.results import failure_result, success_result

# Hardhat development accounts
OPERATOR_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
OPERATOR_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
DOCTOR_ADDRESS = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
NURSE_ADDRESS = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"

IDENTITY_CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
ACCESS_CONTROL_CONTRACT = "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512"
MEDICAL_RECORDS_CONTRACT = "0x9fE46736679d2D9a65F0992F2272dE9f3c7fa6e0"

TEST_PATIENT = {
    "name": "Jean Dupont",
    "birthdate": "1990-01-01",
    "gender": "M",
    "nationalId": "123456789",
    "email": "jean.dupont@example.com",
}

TEST_RECORD = {
    "diagnosis": "Hypertension",
    "symptoms": ["headache", "dizziness"],
    "treatment": "Low-dose medication",
    "notes": "Patient advised to monitor blood pressure daily.",
}


class Revert(Exception):
    """Raised by a fake contract function to revert the transaction"""


class FakeLedger:
    """Stand-in for LedgerGateway with the deployed contracts' semantics"""

    def __init__(self, clock=time.time):
        self.clock = clock
        self.calls = []
        self.fail_next = None
        self.suppress_events = False
        self.connected = True
        self.close_count = 0
        self.funded = []

        self.patients = {}
        self.coarse_access = set()
        self.users = {}
        self.permissions = {}
        self.access_logs = []
        self.records = {}
        self.amendments = []

        self._tx_counter = itertools.count(1)
        self._handlers = {
            IDENTITY_CONTRACT: {
                "registerPatient": self._register_patient,
                "updatePatientData": self._update_patient_data,
                "grantAccess": self._grant_access,
                "revokeAccess": self._revoke_access,
                "getPatient": self._get_patient,
            },
            ACCESS_CONTROL_CONTRACT: {
                "registerUser": self._register_user,
                "grantPermission": self._grant_permission,
                "revokePermission": self._revoke_permission,
                "hasPermission": self._has_permission,
                "getUser": self._get_user,
                "getPermission": self._get_permission,
                "logAccess": self._log_access,
                "getAccessLogs": self._get_access_logs,
            },
            MEDICAL_RECORDS_CONTRACT: {
                "createMedicalRecord": self._create_record,
                "getMedicalRecord": self._get_record,
                "getPatientRecords": self._get_patient_records,
                "updateRecordStatus": self._update_record_status,
                "amendMedicalRecord": self._amend_record,
                "authorizeViewer": self._authorize_viewer,
            },
        }

    # Gateway interface

    def execute(self, contract_ref, function, params=None, gas_limit=DEFAULT_GAS_LIMIT, signer=None):
        sender = Account.from_key(signer).address if signer else OPERATOR_ADDRESS
        self.calls.append(("execute", contract_ref, function, list(params or []), gas_limit, sender))

        if self.fail_next is not None:
            failure, self.fail_next = self.fail_next, None
            return failure

        try:
            events = self._handlers[contract_ref][function](sender, *(params or []))
        except Revert as e:
            return self._revert(e)

        n = next(self._tx_counter)
        return success_result(
            transaction_id="0x%064x" % n,
            status="SUCCESS",
            block_number=n,
            events=[] if self.suppress_events else events or [],
        )

    def query(self, contract_ref, function, params=None):
        self.calls.append(("query", contract_ref, function, list(params or []), None, None))
        try:
            return success_result(result=self._handlers[contract_ref][function](None, *(params or [])))
        except Revert as e:
            return self._revert(e)

    def fund_account(self, address, amount_wei):
        self.funded.append((address, amount_wei))
        return success_result(transaction_id="0x%064x" % next(self._tx_counter), status="SUCCESS")

    def is_connected(self):
        return self.connected

    def close(self):
        self.close_count += 1

    def executed(self, function=None):
        """Transactions sent so far, optionally filtered by function name"""
        return [c for c in self.calls if c[0] == "execute" and (function is None or c[2] == function)]

    def _revert(self, error):
        message = f"execution reverted: {error}"
        if any(marker in message.lower() for marker in NOT_FOUND_MARKERS):
            return failure_result(message, ErrorKind.NOT_FOUND)
        return failure_result(message, ErrorKind.LEDGER_REJECTION)

    def _now(self):
        return int(self.clock())

    # Patient identity contract

    def _register_patient(self, sender, encrypted_data, patient_address, metadata_hash):
        patient_id = len(self.patients) + 1
        self.patients[patient_id] = [patient_id, encrypted_data, patient_address, True, self._now(), metadata_hash]
        return [{"event": "PatientRegistered", "args": {"patientId": patient_id, "patientAddress": patient_address}}]

    def _require_patient(self, patient_id):
        if patient_id not in self.patients:
            raise Revert("Patient not found")
        return self.patients[patient_id]

    def _update_patient_data(self, sender, patient_id, encrypted_data, metadata_hash):
        patient = self._require_patient(patient_id)
        if sender != patient[2]:
            raise Revert("Caller is not the patient")
        patient[1] = encrypted_data
        patient[5] = metadata_hash
        return [{"event": "PatientDataUpdated", "args": {"patientId": patient_id}}]

    def _grant_access(self, sender, patient_id, doctor):
        self._require_patient(patient_id)
        self.coarse_access.add((patient_id, doctor))
        return [{"event": "AccessGranted", "args": {"patientId": patient_id, "doctor": doctor}}]

    def _revoke_access(self, sender, patient_id, doctor):
        self._require_patient(patient_id)
        self.coarse_access.discard((patient_id, doctor))
        return [{"event": "AccessRevoked", "args": {"patientId": patient_id, "doctor": doctor}}]

    def _get_patient(self, sender, patient_id):
        if patient_id not in self.patients:
            return (0, "", ZERO_ADDRESS, False, 0, "")
        return tuple(self.patients[patient_id])

    # Access control contract

    def _register_user(self, sender, address, role, public_key, professional_id):
        if address in self.users:
            raise Revert("User already registered")
        self.users[address] = (address, role, True, public_key, professional_id, self._now())
        return [{"event": "UserRegistered", "args": {"userAddress": address, "role": role}}]

    def _grant_permission(self, sender, grantor, grantee, patient_id, expiration_date, allowed_actions):
        permission_id = len(self.permissions) + 1
        self.permissions[permission_id] = [
            permission_id, grantor, grantee, patient_id, list(allowed_actions), expiration_date, True,
        ]
        return [{
            "event": "PermissionGranted",
            "args": {"permissionId": permission_id, "grantee": grantee, "patientId": patient_id},
        }]

    def _revoke_permission(self, sender, permission_id):
        if permission_id not in self.permissions:
            raise Revert("Permission not found")
        self.permissions[permission_id][6] = False
        return [{"event": "PermissionRevoked", "args": {"permissionId": permission_id}}]

    def _has_permission(self, sender, user, patient_id, action):
        now = self._now()
        return any(
            p[2] == user and p[3] == patient_id and p[6] and now < p[5] and action in p[4]
            for p in self.permissions.values()
        )

    def _get_user(self, sender, address):
        return self.users.get(address, (ZERO_ADDRESS, 0, False, "", "", 0))

    def _get_permission(self, sender, permission_id):
        if permission_id not in self.permissions:
            return (0, ZERO_ADDRESS, ZERO_ADDRESS, 0, [], 0, False)
        return tuple(self.permissions[permission_id])

    def _log_access(self, sender, accessor, patient_id, action, success, details):
        self.access_logs.append((accessor, patient_id, action, success, details, self._now()))
        return [{"event": "AccessLogged", "args": {"accessor": accessor, "patientId": patient_id}}]

    def _get_access_logs(self, sender, patient_id):
        return [entry for entry in self.access_logs if entry[1] == patient_id]

    # Medical records contract

    def _create_record(self, sender, patient_id, doctor_address, record_type, encrypted_data_hash,
                       original_data_hash, attachment_hashes, metadata, is_emergency, authorized_viewers):
        record_id = len(self.records) + 1
        now = self._now()
        self.records[record_id] = [
            record_id, patient_id, doctor_address, record_type, int(RecordStatus.DRAFT),
            encrypted_data_hash, original_data_hash, list(attachment_hashes), list(authorized_viewers),
            is_emergency, now, now,
        ]
        return [{
            "event": "MedicalRecordCreated",
            "args": {"recordId": record_id, "patientId": patient_id, "doctorAddress": doctor_address},
        }]

    def _require_record(self, record_id):
        if record_id not in self.records:
            raise Revert("Record not found")
        return self.records[record_id]

    def _get_record(self, sender, record_id):
        return tuple(self._require_record(record_id))

    def _get_patient_records(self, sender, patient_id):
        return [tuple(r) for r in self.records.values() if r[1] == patient_id]

    def _update_record_status(self, sender, record_id, new_status):
        record = self._require_record(record_id)
        record[4] = new_status
        record[11] = self._now()
        return [{"event": "RecordStatusUpdated", "args": {"recordId": record_id, "newStatus": new_status}}]

    def _amend_record(self, sender, record_id, reason, new_encrypted_data_hash, new_original_data_hash):
        record = self._require_record(record_id)
        self.amendments.append((record_id, reason, record[5]))
        record[4] = int(RecordStatus.AMENDED)
        record[5] = new_encrypted_data_hash
        record[6] = new_original_data_hash
        record[11] = self._now()
        return [{"event": "RecordAmended", "args": {"recordId": record_id, "reason": reason}}]

    def _authorize_viewer(self, sender, record_id, viewer):
        record = self._require_record(record_id)
        if viewer not in record[8]:
            record[8].append(viewer)
        return [{"event": "ViewerAuthorized", "args": {"recordId": record_id, "viewer": viewer}}]
