"""Credential generation strategies for secret rotation.

A strategy turns an AppConfig identity plus its `strategyConfig` mapping into
the key/value pairs written to the rotated secret. Strategies are looked up by
name, case-insensitively; unknown names use the default strategy.
"""

import logging
import uuid
from typing import Dict, Mapping, Optional
from microboot.utils.credentials import (
    DEFAULT_PASSWORD_LENGTH,
    generate_password,
    generate_token,
    generate_username,
)
from microboot.utils.helpers import now, safe_cast, sanitize_name

logger = logging.getLogger(__name__)

ROTATED_AT_KEY = "rotated-at"
ROTATION_ID_KEY = "rotation-id"

DEFAULT_STRATEGY = "default"


class RotationStrategy:
    """Base strategy. Subclasses override `generate`."""

    name: str = DEFAULT_STRATEGY

    def generate(
        self, app_name: str, namespace: str, config: Mapping[str, str]
    ) -> Dict[str, str]:
        raise NotImplementedError()

    def password_length(self, config: Mapping[str, str]) -> int:
        length = safe_cast(config.get("passwordLength"), int, DEFAULT_PASSWORD_LENGTH)
        return length if length > 0 else DEFAULT_PASSWORD_LENGTH


class DefaultStrategy(RotationStrategy):
    name = DEFAULT_STRATEGY

    def generate(self, app_name, namespace, config):
        return {
            "username": generate_username(app_name),
            "password": generate_password(self.password_length(config)),
        }


class DatabaseStrategy(RotationStrategy):
    """Database credentials plus a JDBC url.

    strategyConfig:
        dbType: postgresql (default) or mysql
        host: defaults to `db.<namespace>.svc.cluster.local`
        port: defaults to the standard port of `dbType`
        database: defaults to the sanitized app name
        passwordLength
    """

    name = "database"

    DEFAULT_DB_TYPE = "postgresql"
    DEFAULT_PORTS = {"postgresql": 5432, "mysql": 3306}

    def generate(self, app_name, namespace, config):
        db_type = (config.get("dbType") or self.DEFAULT_DB_TYPE).lower()
        if db_type not in self.DEFAULT_PORTS:
            logger.warning(
                f"Unsupported dbType '{db_type}' for {namespace}/{app_name}, "
                f"using {self.DEFAULT_DB_TYPE}"
            )
            db_type = self.DEFAULT_DB_TYPE
        host = config.get("host") or f"db.{namespace}.svc.cluster.local"
        port = safe_cast(config.get("port"), int, self.DEFAULT_PORTS[db_type])
        database = config.get("database") or sanitize_name(app_name)
        return {
            "db-username": generate_username(app_name),
            "db-password": generate_password(self.password_length(config)),
            "db-url": f"jdbc:{db_type}://{host}:{port}/{database}",
        }


class ApiKeyStrategy(RotationStrategy):
    """strategyConfig: keyLength (bytes, default 16), secretLength (bytes, default 32)."""

    name = "api-key"

    def generate(self, app_name, namespace, config):
        key_length = safe_cast(config.get("keyLength"), int, 16)
        secret_length = safe_cast(config.get("secretLength"), int, 32)
        return {
            "api-key": generate_token(key_length),
            "api-secret": generate_token(secret_length),
        }


class TlsStrategy(RotationStrategy):
    # No certificate issuance: the values are placeholders
    name = "tls"

    def generate(self, app_name, namespace, config):
        return {
            "tls.crt": "placeholder-certificate-data",
            "tls.key": "placeholder-key-data",
        }


STRATEGIES: Dict[str, RotationStrategy] = {
    strategy.name: strategy
    for strategy in (DefaultStrategy(), DatabaseStrategy(), ApiKeyStrategy(), TlsStrategy())
}


def get_strategy(name: Optional[str]) -> RotationStrategy:
    return STRATEGIES.get((name or DEFAULT_STRATEGY).lower(), STRATEGIES[DEFAULT_STRATEGY])


def generate_secret_data(
    strategy: Optional[str],
    app_name: str,
    namespace: str,
    config: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Fresh credentials for `strategy`, stamped with rotation metadata."""
    data = get_strategy(strategy).generate(app_name, namespace, config or {})
    data[ROTATED_AT_KEY] = now()
    data[ROTATION_ID_KEY] = str(uuid.uuid4())
    return data
