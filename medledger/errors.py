"""
Failure taxonomy for the medical ledger platform.

Only PreconditionFailure ever escapes to callers (at construction time).
Every other error is raised internally and turned into a
``{"success": False, "error": ..., "error_kind": ...}`` result by
``medledger.results.ledger_operation``.
"""

from enum import Enum


class ErrorKind(str, Enum):
    PRECONDITION_FAILURE = "precondition_failure"
    LEDGER_REJECTION = "ledger_rejection"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    PERSISTENCE_FAILURE = "persistence_failure"


class MedledgerError(Exception):
    """Base class for all expected failures

    Extra keyword arguments are carried into the failure result.
    """
    kind = ErrorKind.LEDGER_REJECTION

    def __init__(self, message="", **details):
        super().__init__(message)
        self.details = details


class PreconditionFailure(MedledgerError):
    """Required configuration is missing; the process must not serve traffic"""
    kind = ErrorKind.PRECONDITION_FAILURE


class LedgerRejection(MedledgerError):
    """The network or the contract refused the call"""
    kind = ErrorKind.LEDGER_REJECTION


class LedgerTimeout(MedledgerError):
    """No answer from the network within the per-call timeout"""
    kind = ErrorKind.TIMEOUT


class NotFound(MedledgerError):
    kind = ErrorKind.NOT_FOUND


class ValidationFailure(MedledgerError):
    kind = ErrorKind.VALIDATION


class IllegalTransition(ValidationFailure):
    """A record status change that the lifecycle does not allow"""

    def __init__(self, current, new):
        self.current = current
        self.new = new
        super().__init__(f"Illegal status transition: {current.name} -> {new.name}")


class PersistenceFailure(MedledgerError):
    """Local state could not be written after the ledger accepted the transaction"""
    kind = ErrorKind.PERSISTENCE_FAILURE
