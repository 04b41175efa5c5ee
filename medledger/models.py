from pydantic import BaseModel, Field, SecretStr
from typing import List, Optional
import time

from medledger.constants import RecordStatus, RecordType, UserRole


class Participant(BaseModel):
    """Role-tagged participant registered with the access-control contract"""
    address: str
    role: UserRole
    public_key: str
    professional_id: Optional[str] = None
    is_active: bool = True
    registration_date: int


class PatientIdentity(BaseModel):
    """Patient identity as stored on-chain (personal data stays encrypted)"""
    patient_id: int
    encrypted_personal_data: str
    wallet_address: str
    is_active: bool
    creation_date: int
    metadata_hash: str = ""


class WalletRecord(BaseModel):
    """Custodial wallet held by the platform for one patient"""
    patient_id: int
    name: Optional[str] = None
    birthdate: Optional[str] = None
    wallet_address: str
    private_key: SecretStr
    ledger_account_id: str


class PermissionGrant(BaseModel):
    """Time-bounded, action-scoped authorization"""
    permission_id: int
    grantor: str
    grantee: str
    patient_id: int
    allowed_actions: List[str] = Field(default_factory=list)
    expiration_date: int
    is_active: bool

    def is_valid(self, at: Optional[float] = None) -> bool:
        """A grant is valid while it is active and not yet expired"""
        now = time.time() if at is None else at
        return self.is_active and now < self.expiration_date

    def covers(self, action: str, at: Optional[float] = None) -> bool:
        return self.is_valid(at) and action in self.allowed_actions


class MedicalRecord(BaseModel):
    """Medical record metadata; the payload is never decrypted here"""
    record_id: int
    patient_id: int
    doctor_address: str
    record_type: RecordType
    status: RecordStatus
    encrypted_data_hash: str
    original_data_hash: str
    attachment_hashes: List[str] = Field(default_factory=list)
    authorized_viewers: List[str] = Field(default_factory=list)
    is_emergency: bool = False
    timestamp: int
    last_modified: int


class AccessLogEntry(BaseModel):
    """Append-only audit entry"""
    accessor: str
    patient_id: int
    action: str
    success: bool
    details: str = ""
    timestamp: int
