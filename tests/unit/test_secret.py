"""Unit tests for secret rotation."""

import base64
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock
from kubernetes_asyncio.client import V1ObjectMeta, V1Secret
from microboot.common.models.labels import Labels
from microboot.resources.secret import SecretRotator, rotation_due, rotation_targets

CURRENT = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class TestRotationDue:
    """Tests for rotation_due()."""

    def test_never_rotated(self):
        assert rotation_due(None, 24, CURRENT)
        assert rotation_due("", 24, CURRENT)

    def test_unreadable_timestamp(self):
        assert rotation_due("last tuesday", 24, CURRENT)

    def test_recent_rotation(self):
        last = (CURRENT - timedelta(hours=2)).isoformat()
        assert not rotation_due(last, 24, CURRENT)

    def test_interval_elapsed(self):
        last = (CURRENT - timedelta(hours=25)).isoformat()
        assert rotation_due(last, 24, CURRENT)

    def test_naive_timestamp_is_utc(self):
        assert not rotation_due("2024-06-01T11:00:00", 2, CURRENT)
        assert rotation_due("2024-06-01T09:00:00", 2, CURRENT)


class TestRotationTargets:
    """Tests for rotation_targets()."""

    def test_default_target(self, make_app):
        app = make_app(spec={"secretRotation": {"enabled": True}})
        assert rotation_targets(app) == ["billing-api-secrets"]

    def test_configured_sources(self, make_app):
        app = make_app(
            spec={"secretRotation": {"enabled": True, "sources": ["db-creds", "api-creds"]}}
        )
        assert rotation_targets(app) == ["db-creds", "api-creds"]


@pytest.fixture
def rotator():
    rotator = SecretRotator()
    rotator.core_v1_api = AsyncMock()
    return rotator


class TestSecretRotator:
    """Tests for SecretRotator."""

    async def test_creates_missing_secret(self, rotator, make_app, api_error):
        app = make_app(spec={"secretRotation": {"enabled": True}})
        rotator.core_v1_api.read_namespaced_secret.side_effect = api_error(404, "NotFound")

        rotated = await rotator.rotate(app)

        assert rotated == ["billing-api-secrets"]
        body = rotator.core_v1_api.create_namespaced_secret.await_args.kwargs["body"]
        assert body.metadata.name == "billing-api-secrets"
        assert body.type == "Opaque"
        assert set(body.string_data) == {"username", "password", "rotated-at", "rotation-id"}
        assert Labels.ROTATION_TIMESTAMP_ANNOTATION in body.metadata.annotations
        assert body.metadata.owner_references[0].uid == app.uid
        assert app.status.created_resources == ["Secret:shop/billing-api-secrets"]

    async def test_merges_into_existing_secret(self, rotator, make_app):
        app = make_app(spec={"secretRotation": {"enabled": True, "sources": ["db-creds"]}})
        existing = V1Secret(
            metadata=V1ObjectMeta(name="db-creds", namespace="shop", annotations={"team": "payments"}),
            data={"ca.crt": "Y2VydA==", "password": "b2xk"},
        )
        rotator.core_v1_api.read_namespaced_secret.return_value = existing

        await rotator.rotate(app)

        rotator.core_v1_api.create_namespaced_secret.assert_not_awaited()
        body = rotator.core_v1_api.replace_namespaced_secret.await_args.kwargs["body"]
        assert body.data["ca.crt"] == "Y2VydA=="
        assert body.data["password"] != "b2xk"
        assert len(base64.b64decode(body.data["password"])) == 16
        assert body.metadata.annotations["team"] == "payments"
        assert Labels.ROTATION_TIMESTAMP_ANNOTATION in body.metadata.annotations
        assert app.status.created_resources == ["Secret:shop/db-creds"]

    async def test_retries_transient_errors(self, rotator, make_app, api_error):
        app = make_app(spec={"secretRotation": {"enabled": True}})
        rotator.core_v1_api.read_namespaced_secret.side_effect = [
            api_error(503),
            api_error(404, "NotFound"),
        ]

        assert await rotator.rotate(app) == ["billing-api-secrets"]
        rotator.core_v1_api.create_namespaced_secret.assert_awaited_once()

    async def test_forbidden_is_raised(self, rotator, make_app, api_error):
        app = make_app(spec={"secretRotation": {"enabled": True}})
        rotator.core_v1_api.read_namespaced_secret.side_effect = api_error(403, "Forbidden")

        with pytest.raises(Exception):
            await rotator.rotate(app)
        assert app.status.created_resources == []
