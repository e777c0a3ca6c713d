import re
import jsonpickle
from datetime import datetime, timezone


def now() -> str:
    return datetime.now(timezone.utc).isoformat()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_datestr_to_datetime(datestr) -> datetime:
    """Parse an ISO-8601 timestamp. Naive values are read as UTC."""
    if isinstance(datestr, str) and len(datestr) > 0:
        if datestr[-1] == "Z":
            parsed = datetime.fromisoformat(datestr.replace("Z", "+00:00"))
        else:
            parsed = datetime.fromisoformat(datestr)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    else:
        raise ValueError("'{}' is not valid iso date format".format(datestr))


def safe_cast(val, to_type, default=None):
    try:
        return to_type(val)
    except (ValueError, TypeError):
        return default


def sanitize_name(name: str) -> str:
    """Lowercase `name` and drop every character that is not [a-z0-9]."""
    return re.sub(r"[^a-z0-9]", "", (name or "").lower())


def sort_dict_keys(d):
    """Recursively sort dictionary keys and handle nested structures."""
    if isinstance(d, dict):
        return {key: sort_dict_keys(value) for key, value in sorted(d.items())}
    elif isinstance(d, list):
        return [sort_dict_keys(item) for item in d]
    else:
        return d


def canonicalize_dict(data):
    """
    Returns a canonical JSON representation of a dictionary.

    Keys are sorted recursively so the representation stays stable when key
    order varies.
    """
    return jsonpickle.dumps(sort_dict_keys(data), unpicklable=False)
