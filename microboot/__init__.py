__version__ = "1.0.0"

try:
    import os
    from dotenv import load_dotenv, find_dotenv

    env_file = os.environ.get("ENV_FILE", ".env")
    path = find_dotenv(filename=env_file, raise_error_if_not_found=True)
    print(f"Loading environment variables from {path}")
    load_dotenv(dotenv_path=path)

except IOError:
    # No file to set environment variables
    pass

from microboot.handlers import (  # noqa: E402
    appconfig,
    pods,
    health,
)

__all__ = [
    "appconfig",
    "pods",
    "health",
]
