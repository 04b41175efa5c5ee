"""
Access control authority.

Maintains the role-tagged participant directory, issues and revokes
time-bounded permission grants, answers permission checks and appends
to the audit log. All state lives in the access-control contract; every
check is a fresh ledger query.
"""

import logging
from typing import List, Optional

from medledger.constants import (
    DEFAULT_GAS_LIMIT,
    ERRORS,
    PERMISSION_GAS,
    USER_REGISTRATION_GAS,
    UserRole,
)
from medledger.errors import LedgerRejection, NotFound, ValidationFailure
from medledger.models import AccessLogEntry, Participant, PermissionGrant
from medledger.results import event_arg, ledger_operation, raise_for_result, success_result
from medledger.utils import checksum_address, to_ledger_id, to_unix_timestamp

logger = logging.getLogger(__name__)


class AccessControlService:
    """Participants, permission grants and the access log"""

    def __init__(self, gateway, contract_ref):
        self.gateway = gateway
        self.contract_ref = contract_ref

    def _execute(self, function, params, gas_limit):
        result = raise_for_result(self.gateway.execute(self.contract_ref, function, params, gas_limit))
        logger.info(f"{function} confirmed: {result['transaction_id']}")
        return result

    def _query(self, function, params):
        return raise_for_result(self.gateway.query(self.contract_ref, function, params))["result"]

    @ledger_operation("register user")
    def register_user(self, address: str, role: UserRole, public_key: str, professional_id: Optional[str] = None):
        """
        Register a participant in the directory.

        Args:
            address: Ledger address of the participant
            role: UserRole of the participant
            public_key: Participant public key
            professional_id: Optional professional registration number

        Returns:
            dict: {success, transaction_id} or a failure
        """
        try:
            role = UserRole(role)
        except ValueError:
            raise ValidationFailure(f"Invalid role: {role}")

        result = self._execute(
            "registerUser",
            [checksum_address(address), int(role), public_key, professional_id or ""],
            USER_REGISTRATION_GAS,
        )
        return success_result(transaction_id=result["transaction_id"])

    @ledger_operation("grant permission")
    def grant_permission(self, grantor: str, grantee: str, patient_id: int, expiration_date, allowed_actions: List[str]):
        """
        Grant a time-bounded permission over a patient's data.

        Concurrent grants for the same (grantee, patient) are independent.

        Args:
            grantor: Address granting the permission
            grantee: Address receiving the permission
            patient_id: Patient the permission applies to
            expiration_date: datetime or unix seconds after which the grant lapses
            allowed_actions: Actions covered, e.g. ["READ"]

        Returns:
            dict: {success, transaction_id, permission_id} or a failure
        """
        expiration = to_unix_timestamp(expiration_date)
        result = self._execute(
            "grantPermission",
            [
                checksum_address(grantor),
                checksum_address(grantee),
                to_ledger_id(patient_id, "patient id"),
                expiration,
                [str(action) for action in allowed_actions],
            ],
            PERMISSION_GAS,
        )
        permission_id = event_arg(result, "PermissionGranted", "permissionId")
        if permission_id is None:
            raise LedgerRejection(
                ERRORS["MISSING_EVENT"].format(event="PermissionGranted"),
                transaction_id=result["transaction_id"],
            )
        return success_result(transaction_id=result["transaction_id"], permission_id=int(permission_id))

    @ledger_operation("revoke permission")
    def revoke_permission(self, permission_id: int):
        """Deactivate a grant; there is no way back"""
        permission_id = to_ledger_id(permission_id, "permission id")
        result = self._execute("revokePermission", [permission_id], DEFAULT_GAS_LIMIT)
        return success_result(transaction_id=result["transaction_id"])

    @ledger_operation("check permission")
    def has_permission(self, user_address: str, patient_id: int, action: str):
        """
        Ask the ledger whether a user currently holds a valid grant for an action.

        Returns:
            dict: {success, has_permission} or a failure
        """
        allowed = self._query(
            "hasPermission",
            [checksum_address(user_address), to_ledger_id(patient_id, "patient id"), action],
        )
        return success_result(has_permission=bool(allowed))

    @ledger_operation("get user")
    def get_user(self, address: str):
        """
        Returns:
            dict: {success, user: Participant} or a failure
        """
        user = parse_user(self._query("getUser", [checksum_address(address)]))
        if user.registration_date == 0:
            raise NotFound(f"{ERRORS['USER_NOT_FOUND']}: {address}")
        return success_result(user=user)

    @ledger_operation("get permission")
    def get_permission(self, permission_id: int):
        """
        Returns:
            dict: {success, permission: PermissionGrant, is_valid} or a failure;
            is_valid tells whether the grant is active and unexpired right now
        """
        permission_id = to_ledger_id(permission_id, "permission id")
        permission = parse_permission(self._query("getPermission", [permission_id]))
        if permission.permission_id == 0:
            raise NotFound(f"{ERRORS['PERMISSION_NOT_FOUND']}: {permission_id}")
        return success_result(permission=permission, is_valid=permission.is_valid())

    @ledger_operation("log access")
    def log_access(self, accessor: str, patient_id: int, action: str, success: bool, details: str = ""):
        """Append an entry to the audit log, for allowed and denied attempts alike"""
        result = self._execute(
            "logAccess",
            [
                checksum_address(accessor),
                to_ledger_id(patient_id, "patient id"),
                action,
                bool(success),
                details or "",
            ],
            DEFAULT_GAS_LIMIT,
        )
        return success_result(transaction_id=result["transaction_id"])

    @ledger_operation("get access logs")
    def get_access_logs(self, patient_id: int):
        """
        Returns:
            dict: {success, logs: [AccessLogEntry]} or a failure
        """
        raw_logs = self._query("getAccessLogs", [to_ledger_id(patient_id, "patient id")])
        return success_result(logs=[parse_access_log(raw) for raw in raw_logs])

    @ledger_operation("authorize access")
    def authorize(self, user_address: str, patient_id: int, action: str, details: str = ""):
        """
        Decide an access attempt and record it in the audit log.

        Only fine-grained permission grants authorize; the coarse
        grant/revoke toggle of the identity contract is not consulted.

        Returns:
            dict: {success, allowed, log_transaction_id} or a failure
        """
        check = self.has_permission(user_address, patient_id, action)
        raise_for_result(check)
        allowed = check["has_permission"]

        if not allowed:
            logger.warning(f"Access denied: {user_address} cannot {action} for patient {patient_id}")
            details = details or ERRORS["PERMISSION_DENIED"]

        log = self.log_access(user_address, patient_id, action, allowed, details)
        if not log["success"]:
            logger.error(f"Access decision for {user_address} on patient {patient_id} was not logged: {log['error']}")

        return success_result(allowed=allowed, log_transaction_id=log.get("transaction_id"))


def parse_user(raw) -> Participant:
    """Parse the getUser struct"""
    return Participant(
        address=raw[0],
        role=UserRole(raw[1]),
        is_active=raw[2],
        public_key=raw[3],
        professional_id=raw[4] or None,
        registration_date=raw[5],
    )


def parse_permission(raw) -> PermissionGrant:
    return PermissionGrant(
        permission_id=raw[0],
        grantor=raw[1],
        grantee=raw[2],
        patient_id=raw[3],
        allowed_actions=list(raw[4]),
        expiration_date=raw[5],
        is_active=raw[6],
    )


def parse_access_log(raw) -> AccessLogEntry:
    return AccessLogEntry(
        accessor=raw[0],
        patient_id=raw[1],
        action=raw[2],
        success=raw[3],
        details=raw[4],
        timestamp=raw[5],
    )
