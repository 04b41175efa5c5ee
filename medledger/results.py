"""
Result helpers shared by the gateway and the managers.

Every public operation answers with a plain dict:

    {"success": True, "transaction_id": "0x...", ...}
    {"success": False, "error": "...", "error_kind": "..."}
"""

import logging
from functools import wraps

from medledger.errors import ErrorKind, LedgerRejection, LedgerTimeout, MedledgerError, NotFound, ValidationFailure

logger = logging.getLogger(__name__)

_KIND_TO_ERROR = {
    ErrorKind.LEDGER_REJECTION.value: LedgerRejection,
    ErrorKind.TIMEOUT.value: LedgerTimeout,
    ErrorKind.NOT_FOUND.value: NotFound,
    ErrorKind.VALIDATION.value: ValidationFailure,
}


def success_result(**fields):
    """
    Create a standardized success result.

    Args:
        **fields: Operation-specific fields to include

    Returns:
        dict: A success result
    """
    result = {"success": True}
    result.update(fields)
    return result


def failure_result(error, kind=ErrorKind.LEDGER_REJECTION, **fields):
    """
    Create a standardized failure result.

    Args:
        error: Human readable error message
        kind: ErrorKind (or its string value) of the failure
        **fields: Extra context, e.g. a transaction id

    Returns:
        dict: A failure result
    """
    result = {
        "success": False,
        "error": str(error) or "Unknown error",
        "error_kind": ErrorKind(kind).value,
    }
    result.update(fields)
    return result


def raise_for_result(result):
    """Raise the MedledgerError matching a failure result; return successes unchanged"""
    if result["success"]:
        return result
    error_class = _KIND_TO_ERROR.get(result.get("error_kind"), LedgerRejection)
    details = {k: v for k, v in result.items() if k not in ("success", "error", "error_kind")}
    error = error_class(result.get("error", ""), **details)
    # Keep kinds without a dedicated class, e.g. precondition_failure
    if result.get("error_kind"):
        error.kind = ErrorKind(result["error_kind"])
    raise error


def ledger_operation(description):
    """
    Decorator converting every exception raised by a public operation into
    a failure result, so that nothing escapes to the caller.

    Args:
        description: Short label used in log lines, e.g. "register patient"
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except MedledgerError as e:
                logger.error(f"Failed to {description}: {e}")
                return failure_result(e, e.kind, **e.details)
            except Exception as e:
                logger.exception(f"Unexpected error while trying to {description}")
                return failure_result(e, ErrorKind.LEDGER_REJECTION)
        return decorated_function
    return decorator


def event_args(result, event):
    """All argument dicts of a given event decoded from an execute() result"""
    return [e["args"] for e in result.get("events") or [] if e.get("event") == event]


def event_arg(result, event, name):
    """First value of an event argument in an execute() result, or None"""
    for args in event_args(result, event):
        if name in args:
            return args[name]
    return None
