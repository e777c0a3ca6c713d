"""Unit tests for the AppConfig reconciler."""

import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, Mock
from microboot.controller import (
    AppConfigReconciler,
    LifecycleState,
    ReconcileResult,
    UpdateAction,
    lifecycle_state,
)
from microboot.resources.appconfig import AppConfig, CONDITION_RECONCILED
from microboot.resources.config_maps import ConfigMapSynchronizer
from microboot.resources.secret import SecretRotator
from microboot.resources.sidecar import InjectionRegistry
from microboot.upgrade import CURRENT_VERSION, VERSION_LABEL
from microboot.utils.helpers import utc_now

DELETED_AT = "2024-06-01T12:00:00Z"


@pytest.fixture
def reconciler():
    return AppConfigReconciler(
        config_maps=Mock(sync=AsyncMock(return_value=0)),
        rbac=Mock(sync=AsyncMock()),
        network_policies=Mock(sync=AsyncMock(return_value="create")),
        secrets=Mock(rotate=AsyncMock(return_value=["billing-api-secrets"])),
        registry=InjectionRegistry(),
    )


def last_condition(app):
    return app.status.conditions[-1]


class TestLifecycleState:
    """Tests for lifecycle_state()."""

    def test_states(self, make_app):
        assert lifecycle_state(make_app(active=False)) is LifecycleState.NEW
        assert lifecycle_state(make_app()) is LifecycleState.ACTIVE
        assert lifecycle_state(make_app(deletion_timestamp=DELETED_AT)) is LifecycleState.TERMINATING
        assert (
            lifecycle_state(make_app(active=False, deletion_timestamp=DELETED_AT))
            is LifecycleState.FINALIZED
        )


class TestReconcile:
    """Tests for AppConfigReconciler.reconcile()."""

    async def test_new_object_only_gets_finalizer(self, reconciler, make_app):
        app = make_app(active=False, labels={"team": "payments"})
        spec, annotations = dict(app.spec), dict(app.annotations)

        result = await reconciler.reconcile(app)

        assert result == ReconcileResult.update_resource()
        assert app.finalizers == [AppConfig.FINALIZER]
        assert app.labels == {"team": "payments"}
        assert app.annotations == annotations
        assert app.spec == spec
        assert app.status.conditions == []
        reconciler.config_maps.sync.assert_not_awaited()

    async def test_first_active_pass_stamps_version(self, reconciler, make_app):
        app = make_app(labels={})
        result = await reconciler.reconcile(app)
        assert result.action is UpdateAction.UPDATE_STATUS
        assert app.labels[VERSION_LABEL] == CURRENT_VERSION

    async def test_finalized_object_is_ignored(self, reconciler, make_app):
        app = make_app(active=False, deletion_timestamp=DELETED_AT)
        assert await reconciler.reconcile(app) == ReconcileResult.no_update()

    async def test_outdated_object_is_upgraded_first(self, reconciler, make_app):
        app = make_app(labels={VERSION_LABEL: "v1alpha1"})
        result = await reconciler.reconcile(app)
        assert result.action is UpdateAction.UPDATE_RESOURCE
        assert app.labels[VERSION_LABEL] == CURRENT_VERSION
        reconciler.config_maps.sync.assert_not_awaited()

    async def test_minimal_spec_converges(self, reconciler, make_app):
        app = make_app()
        result = await reconciler.reconcile(app)

        assert result == ReconcileResult.update_status()
        reconciler.config_maps.sync.assert_awaited_once_with(app)
        reconciler.rbac.sync.assert_not_awaited()
        reconciler.network_policies.sync.assert_not_awaited()
        reconciler.secrets.rotate.assert_not_awaited()
        condition = last_condition(app)
        assert condition["type"] == CONDITION_RECONCILED
        assert condition["status"] == "True"
        assert app.status.last_sync_time is not None

    async def test_optional_features_run_when_configured(self, reconciler, make_app):
        app = make_app(
            spec={
                "rbac": {"roles": ["config-reader"]},
                "networkPolicy": {"enabled": True},
                "sidecarInjection": {
                    "enabled": True,
                    "image": "envoyproxy/envoy:v1.29",
                    "selectorLabels": {"app": "billing-api"},
                },
            }
        )
        await reconciler.reconcile(app)

        reconciler.rbac.sync.assert_awaited_once_with(app)
        reconciler.network_policies.sync.assert_awaited_once_with(app)
        assert app.key in reconciler.registry

    async def test_disabled_injection_unregisters(self, reconciler, make_app):
        app = make_app()
        reconciler.registry.register(app)
        await reconciler.reconcile(app)
        assert app.key not in reconciler.registry

    async def test_disabled_network_policy_is_skipped(self, reconciler, make_app):
        app = make_app(spec={"networkPolicy": {"enabled": False}})
        await reconciler.reconcile(app)
        reconciler.network_policies.sync.assert_not_awaited()

    async def test_due_rotation_requeues_after_interval(self, reconciler, make_app):
        app = make_app(spec={"secretRotation": {"enabled": True, "intervalHours": 1}})
        result = await reconciler.reconcile(app)

        assert result == ReconcileResult.update_status(3600.0)
        reconciler.secrets.rotate.assert_awaited_once_with(app)
        assert app.status.last_secret_rotation_time is not None

    async def test_recent_rotation_is_not_repeated(self, reconciler, make_app):
        recent = (utc_now() - timedelta(minutes=5)).isoformat()
        app = make_app(
            spec={"secretRotation": {"enabled": True, "intervalHours": 2}},
            status={"lastSecretRotationTime": recent},
        )
        result = await reconciler.reconcile(app)

        assert result.requeue_after == 7200.0
        reconciler.secrets.rotate.assert_not_awaited()
        assert app.status.last_secret_rotation_time == recent

    async def test_server_error_requeues(self, reconciler, make_app, api_error, fast_settings):
        reconciler.config_maps.sync.side_effect = api_error(503, "ServiceUnavailable")
        app = make_app()
        result = await reconciler.reconcile(app)

        assert result == ReconcileResult.update_status(fast_settings.server_error_requeue_seconds)
        assert result.requeue_after == 30
        assert reconciler.config_maps.sync.await_count == fast_settings.retry_max_retries + 1
        condition = last_condition(app)
        assert condition["status"] == "False"
        assert condition["message"].startswith("Kubernetes API error: (503)")

    async def test_throttled_requeues(self, reconciler, make_app, api_error):
        reconciler.rbac.sync.side_effect = api_error(429, "TooManyRequests")
        app = make_app(spec={"rbac": {}})
        result = await reconciler.reconcile(app)
        assert result == ReconcileResult.update_status(10)

    async def test_client_error_is_not_requeued(self, reconciler, make_app, api_error):
        reconciler.config_maps.sync.side_effect = api_error(403, "Forbidden")
        app = make_app()
        result = await reconciler.reconcile(app)

        assert result == ReconcileResult.update_status()
        reconciler.config_maps.sync.assert_awaited_once()
        assert last_condition(app)["status"] == "False"

    async def test_other_errors_mark_failure(self, reconciler, make_app):
        reconciler.network_policies.sync.side_effect = ValueError("Unsupported network policy rule")
        app = make_app(spec={"networkPolicy": {"enabled": True}})
        result = await reconciler.reconcile(app)

        assert result == ReconcileResult.update_status()
        assert last_condition(app)["message"] == (
            "Reconciliation failed: Unsupported network policy rule"
        )

    async def test_new_object_with_rotation_creates_one_secret(self, make_app, api_error):
        rotator = SecretRotator()
        rotator.core_v1_api = AsyncMock()
        rotator.core_v1_api.read_namespaced_secret.side_effect = api_error(404, "NotFound")
        reconciler = AppConfigReconciler(
            config_maps=ConfigMapSynchronizer(),
            secrets=rotator,
            registry=InjectionRegistry(),
        )
        app = make_app(
            spec={"secretRotation": {"enabled": True, "intervalHours": 1}}, active=False
        )

        assert await reconciler.reconcile(app) == ReconcileResult.update_resource()
        result = await reconciler.reconcile(app)

        rotator.core_v1_api.create_namespaced_secret.assert_awaited_once()
        body = rotator.core_v1_api.create_namespaced_secret.await_args.kwargs["body"]
        assert body.metadata.name == "billing-api-secrets"
        assert app.status.created_resources == ["Secret:shop/billing-api-secrets"]
        assert len(app.status.conditions) == 1
        assert last_condition(app)["type"] == CONDITION_RECONCILED
        assert last_condition(app)["status"] == "True"
        assert result.action is UpdateAction.UPDATE_STATUS
        assert result.requeue_after == 3600

    async def test_conditions_are_appended(self, reconciler, make_app):
        app = make_app()
        await reconciler.reconcile(app)
        await reconciler.reconcile(app)
        assert len(app.status.conditions) == 2


class TestFinalize:
    """Tests for AppConfigReconciler.finalize()."""

    @pytest.fixture
    def terminating_app(self, make_app):
        return make_app(
            deletion_timestamp=DELETED_AT,
            status={
                "createdResources": [
                    "ConfigMap:shop/billing-api-application-yaml",
                    "Secret:shop/billing-api-secrets",
                    "bogus",
                    "Deployment:shop/billing",
                ]
            },
        )

    @pytest.fixture
    def deleting_reconciler(self, reconciler):
        reconciler.delete_config_map = AsyncMock()
        reconciler.delete_secret = AsyncMock()
        return reconciler

    async def test_deletes_recorded_resources(self, deleting_reconciler, terminating_app):
        result = await deleting_reconciler.reconcile(terminating_app)

        assert result == ReconcileResult.update_resource()
        deleting_reconciler.delete_config_map.assert_awaited_once_with(
            "billing-api-application-yaml", "shop"
        )
        deleting_reconciler.delete_secret.assert_awaited_once_with("billing-api-secrets", "shop")
        assert not terminating_app.has_finalizer()

    async def test_failed_delete_does_not_block(self, deleting_reconciler, terminating_app, api_error):
        deleting_reconciler.delete_config_map.side_effect = api_error(403, "Forbidden")
        result = await deleting_reconciler.reconcile(terminating_app)

        assert result == ReconcileResult.update_resource()
        deleting_reconciler.delete_secret.assert_awaited_once()
        assert not terminating_app.has_finalizer()

    async def test_transient_delete_errors_are_retried(
        self, deleting_reconciler, terminating_app, api_error
    ):
        deleting_reconciler.delete_secret.side_effect = [api_error(500), None]
        await deleting_reconciler.reconcile(terminating_app)
        assert deleting_reconciler.delete_secret.await_count == 2

    async def test_unregisters_from_injection(self, deleting_reconciler, terminating_app):
        deleting_reconciler.registry.register(terminating_app)
        await deleting_reconciler.reconcile(terminating_app)
        assert terminating_app.key not in deleting_reconciler.registry

    async def test_malformed_status_still_finalizes(self, deleting_reconciler, make_app):
        app = make_app(
            deletion_timestamp=DELETED_AT,
            status={
                "lastSecretRotationTime": 1700000000,
                "createdResources": ["Secret:shop/billing-api-secrets", 7],
            },
        )
        result = await deleting_reconciler.reconcile(app)

        assert result == ReconcileResult.update_resource()
        deleting_reconciler.delete_secret.assert_awaited_once_with("billing-api-secrets", "shop")
        assert not app.has_finalizer()

    async def test_keeps_unrelated_finalizers(self, deleting_reconciler, make_app):
        app = make_app(
            deletion_timestamp=DELETED_AT,
            finalizers=["example.com/other", AppConfig.FINALIZER],
        )
        await deleting_reconciler.reconcile(app)
        assert app.finalizers == ["example.com/other"]


class TestOnError:
    """Tests for AppConfigReconciler.on_error()."""

    def test_marks_failure(self, reconciler, make_app):
        app = make_app()
        result = reconciler.on_error(app, RuntimeError("boom"))
        assert result == ReconcileResult.update_status()
        assert last_condition(app)["message"] == "Reconciliation failed: boom"
        assert last_condition(app)["status"] == "False"
