import base64
import secrets
from microboot.utils.helpers import sanitize_name

PASSWORD_ALPHABET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz"
    "0123456789"
    "!@#$%^&*()-_=+[]{}|;:,.<>?"
)
DEFAULT_PASSWORD_LENGTH = 16
USERNAME_SUFFIX_BOUND = 0x1000


def generate_password(length: int = DEFAULT_PASSWORD_LENGTH) -> str:
    if length < 1:
        raise ValueError(f"Password length must be positive, got {length}")
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def generate_username(app_name: str) -> str:
    """`<sanitized app name>_<hex>`, e.g. `billingapi_3fa`."""
    return f"{sanitize_name(app_name)}_{secrets.randbelow(USERNAME_SUFFIX_BOUND):x}"


def generate_token(nbytes: int) -> str:
    """URL-safe base64 of `nbytes` random bytes, without padding."""
    return base64.urlsafe_b64encode(secrets.token_bytes(nbytes)).decode().rstrip("=")
