import os
from typing import Any

_TRUE, _FALSE = {"True", "true", "yes", "1"}, {"False", "false", "no", "0"}


def _getenv(name: str, *default: Any) -> Any:
    try:
        v = os.environ[name]
        if v in _TRUE:
            return True
        elif v in _FALSE:
            return False
        else:
            return v
    except KeyError:
        pass
    if default:
        return default[0]
    raise KeyError(name)


# ------------------------------------------------
# ---- Defaults and environment variables ----
# ------------------------------------------------

#: Value of the `managed-by` label stamped on every child resource
OPERATOR_NAME = _getenv("OPERATOR_NAME", "microservice-bootstrap-operator")

#: Number of retries (after the first attempt) for cluster writes
RETRY_MAX_RETRIES = int(_getenv("RETRY_MAX_RETRIES", 3))

#: Seconds to wait before the first retry
RETRY_INITIAL_DELAY_SECONDS = float(_getenv("RETRY_INITIAL_DELAY_SECONDS", 1.0))

#: Upper bound on the delay between retries
RETRY_MAX_DELAY_SECONDS = float(_getenv("RETRY_MAX_DELAY_SECONDS", 10.0))

#: Upper bound on the delay between retries when deleting child resources
CLEANUP_RETRY_MAX_DELAY_SECONDS = float(
    _getenv("CLEANUP_RETRY_MAX_DELAY_SECONDS", 5.0)
)

#: Seconds before retrying a reconciliation that failed with a 5xx API error
SERVER_ERROR_REQUEUE_SECONDS = float(_getenv("SERVER_ERROR_REQUEUE_SECONDS", 30))

#: Seconds before retrying a reconciliation that was throttled (429)
THROTTLED_REQUEUE_SECONDS = float(_getenv("THROTTLED_REQUEUE_SECONDS", 10))

#: Seconds between checks for elapsed requeue delays
REQUEUE_POLL_INTERVAL_SECONDS = float(_getenv("REQUEUE_POLL_INTERVAL_SECONDS", 1.0))

#: Inject sidecars into newly created pods
SIDECAR_INJECTION_ENABLED = bool(_getenv("SIDECAR_INJECTION_ENABLED", True))


class Settings:
    """Operator settings"""

    operator_name: str = OPERATOR_NAME
    retry_max_retries: int = RETRY_MAX_RETRIES
    retry_initial_delay_seconds: float = RETRY_INITIAL_DELAY_SECONDS
    retry_max_delay_seconds: float = RETRY_MAX_DELAY_SECONDS
    cleanup_retry_max_delay_seconds: float = CLEANUP_RETRY_MAX_DELAY_SECONDS
    server_error_requeue_seconds: float = SERVER_ERROR_REQUEUE_SECONDS
    throttled_requeue_seconds: float = THROTTLED_REQUEUE_SECONDS
    sidecar_injection_enabled: bool = SIDECAR_INJECTION_ENABLED

    def __init__(self, **kwargs: Any) -> None:
        for key, value in kwargs.items():
            if not hasattr(self.__class__, key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)
