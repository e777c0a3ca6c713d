import json
from enum import Enum
from kubernetes_asyncio.client import ApiException
from marshmallow import ValidationError

_ALREADY_EXISTS = "alreadyexists"
_NOT_FOUND = "notfound"


class ErrorKind(Enum):
    """Coarse classification of a failed operation."""

    SERVER = "server"
    THROTTLED = "throttled"
    CONFLICT = "conflict"
    NOT_FOUND = "not-found"
    CLIENT = "client"
    INVALID = "invalid"
    NON_API = "non-api"


_RETRYABLE = {ErrorKind.SERVER, ErrorKind.THROTTLED, ErrorKind.CONFLICT, ErrorKind.NON_API}


def _reason(ex: ApiException) -> str:
    try:
        err = json.loads(ex.body) if ex.body else {}
    except (TypeError, ValueError):
        return ""
    if not isinstance(err, dict):
        return ""
    return str(err.get("reason", "")).lower()


def already_exists_error(ex: Exception) -> bool:
    if not isinstance(ex, ApiException):
        return False
    return _reason(ex) == _ALREADY_EXISTS


def not_found_error(ex: Exception) -> bool:
    if not isinstance(ex, ApiException):
        return False
    return ex.status == 404 or _reason(ex) == _NOT_FOUND


def classify_error(ex: Exception) -> ErrorKind:
    """Classify `ex` without side effects."""
    if isinstance(ex, (ValidationError, ValueError, TypeError, KeyError)):
        return ErrorKind.INVALID
    if not isinstance(ex, ApiException):
        return ErrorKind.NON_API
    status = ex.status or 0
    if status >= 500:
        return ErrorKind.SERVER
    if status == 429:
        return ErrorKind.THROTTLED
    if status == 409:
        return ErrorKind.CONFLICT
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status == 0:
        # transport failures surface without an HTTP status
        return ErrorKind.SERVER
    return ErrorKind.CLIENT


def is_retryable(kind: ErrorKind) -> bool:
    return kind in _RETRYABLE


def retryable_error(ex: Exception) -> bool:
    """Retry predicate for cluster writes."""
    return is_retryable(classify_error(ex))


def api_error_message(ex: Exception) -> str:
    """Human readable message for an error, enriched for API errors."""
    if not isinstance(ex, ApiException):
        return str(ex)
    error_msg = f"({ex.status}) {ex.reason}"
    try:
        if ex.body:
            body = json.loads(ex.body)
            if isinstance(body, dict) and "message" in body:
                error_msg = f"{error_msg} - {body['message']}"
    except (TypeError, ValueError):
        pass
    return error_msg
