"""Unit tests for AppConfig event handling."""

import logging
import kopf
import pytest
from unittest.mock import AsyncMock, Mock
from microboot.controller import ReconcileResult
from microboot.handlers import appconfig as handlers
from microboot.resources.appconfig import AppConfig
from microboot.resources.sidecar import injection_registry
from microboot.upgrade import CURRENT_VERSION, VERSION_LABEL


def make_body(generation=1, **metadata):
    meta = {
        "name": "billing",
        "namespace": "shop",
        "uid": "0b6f1c2e-uid",
        "generation": generation,
        "resourceVersion": "501",
        "finalizers": [AppConfig.FINALIZER],
        "labels": {VERSION_LABEL: CURRENT_VERSION},
    }
    meta.update(metadata)
    return {"metadata": meta, "spec": {"appName": "billing-api"}, "status": {}}


@pytest.fixture(autouse=True)
def clean_state():
    yield
    handlers.requeue_deadlines.clear()
    handlers.handled_fingerprints.clear()
    handlers.reconciliation_locks.clear()
    injection_registry.clear()


@pytest.fixture
def persisted(monkeypatch):
    persist_resource, persist_status = AsyncMock(), AsyncMock()
    monkeypatch.setattr(AppConfig, "persist_resource", persist_resource)
    monkeypatch.setattr(AppConfig, "persist_status", persist_status)
    return Mock(resource=persist_resource, status=persist_status)


@pytest.fixture
def reconciler(fast_settings):
    reconciler = Mock()
    reconciler.conf = fast_settings
    reconciler.reconcile = AsyncMock(return_value=ReconcileResult.update_status())
    reconciler.on_error = Mock(return_value=ReconcileResult.update_status())
    return reconciler


@pytest.fixture
def memo(reconciler):
    memo = kopf.Memo()
    memo.reconciler = reconciler
    return memo


async def send(memo, type, body):
    await handlers.on_appconfig_event(
        type=type, body=body, logger=logging.getLogger("test"), memo=memo
    )


class TestFingerprint:
    """Tests for fingerprint()."""

    def test_ignores_status_and_kopf_annotations(self):
        base = AppConfig.from_body(make_body())
        body = make_body(annotations={"kopf.zalando.org/last-handled-configuration": "{}"})
        body["status"] = {"lastSyncTime": "2024-06-01T12:00:00+00:00"}
        assert handlers.fingerprint(AppConfig.from_body(body)) == handlers.fingerprint(base)

    def test_changes_with_generation_and_metadata(self):
        base = handlers.fingerprint(AppConfig.from_body(make_body()))
        assert handlers.fingerprint(AppConfig.from_body(make_body(generation=2))) != base
        assert handlers.fingerprint(AppConfig.from_body(make_body(finalizers=[]))) != base
        assert (
            handlers.fingerprint(AppConfig.from_body(make_body(annotations={"team": "payments"})))
            != base
        )


class TestApplyResult:
    """Tests for apply_result()."""

    async def test_persists_by_action(self, persisted):
        app = AppConfig.from_body(make_body())
        await handlers.apply_result(app, ReconcileResult.update_resource())
        persisted.resource.assert_awaited_once()
        persisted.status.assert_not_awaited()

        await handlers.apply_result(app, ReconcileResult.update_status())
        persisted.status.assert_awaited_once()

        await handlers.apply_result(app, ReconcileResult.no_update())
        assert persisted.resource.await_count == 1
        assert persisted.status.await_count == 1


class TestOnAppConfigEvent:
    """Tests for on_appconfig_event()."""

    async def test_reconciles_and_persists_status(self, memo, reconciler, persisted):
        await send(memo, "ADDED", make_body())
        reconciler.reconcile.assert_awaited_once()
        persisted.status.assert_awaited_once()
        assert "shop/billing" in handlers.handled_fingerprints

    async def test_status_only_update_is_skipped(self, memo, reconciler, persisted):
        await send(memo, "ADDED", make_body())
        body = make_body()
        body["status"] = {"lastSyncTime": "2024-06-01T12:00:00+00:00"}
        await send(memo, "MODIFIED", body)
        reconciler.reconcile.assert_awaited_once()

    async def test_spec_change_is_reconciled(self, memo, reconciler, persisted):
        await send(memo, "ADDED", make_body())
        await send(memo, "MODIFIED", make_body(generation=2))
        assert reconciler.reconcile.await_count == 2

    async def test_resource_update_is_followed_up(self, memo, reconciler, persisted):
        reconciler.reconcile.return_value = ReconcileResult.update_resource()
        await send(memo, "ADDED", make_body())
        persisted.resource.assert_awaited_once()
        assert "shop/billing" not in handlers.handled_fingerprints

        await send(memo, "ADDED", make_body())
        assert reconciler.reconcile.await_count == 2

    async def test_requeue_is_scheduled(self, memo, reconciler, persisted):
        reconciler.reconcile.return_value = ReconcileResult.update_status(3600.0)
        await send(memo, "ADDED", make_body())
        assert "shop/billing" in handlers.requeue_deadlines

    async def test_unhandled_error_is_recorded(self, memo, reconciler, persisted):
        reconciler.reconcile.side_effect = RuntimeError("boom")
        await send(memo, "ADDED", make_body())
        reconciler.on_error.assert_called_once()
        persisted.status.assert_awaited_once()

    async def test_persist_failure_requeues(self, memo, reconciler, persisted, api_error):
        persisted.status.side_effect = api_error(500)
        await send(memo, "ADDED", make_body())
        assert "shop/billing" not in handlers.handled_fingerprints
        assert "shop/billing" in handlers.requeue_deadlines

    async def test_deleted_object_is_forgotten(self, memo, reconciler, persisted):
        await send(memo, "ADDED", make_body())
        injection_registry.register(AppConfig.from_body(make_body()))

        await send(memo, "DELETED", make_body())

        assert "shop/billing" not in handlers.handled_fingerprints
        assert "shop/billing" not in injection_registry
        reconciler.reconcile.assert_awaited_once()

    async def test_conflict_is_reconciled_again(self, memo, reconciler, persisted, api_error):
        reconciler.reconcile.return_value = ReconcileResult.update_resource()
        persisted.resource.side_effect = api_error(409, "Conflict")
        await send(memo, "ADDED", make_body())
        assert "shop/billing" not in handlers.handled_fingerprints
        assert "shop/billing" in handlers.requeue_deadlines

    async def test_malformed_status_does_not_block_events(self, memo, reconciler, persisted):
        body = make_body()
        body["status"] = {"lastSecretRotationTime": 1700000000, "createdResources": "bogus"}
        await send(memo, "ADDED", body)
        reconciler.reconcile.assert_awaited_once()

        await send(memo, "DELETED", body)
        assert "shop/billing" not in handlers.handled_fingerprints


class TestRequeue:
    """Tests for schedule_requeue() and process_requeues()."""

    async def tick(self, memo, body, stopped=False):
        await handlers.process_requeues(
            body=body, logger=logging.getLogger("test"), memo=memo, stopped=stopped
        )

    def test_schedule_and_cancel(self):
        app = AppConfig.from_body(make_body())
        handlers.schedule_requeue(app, 30)
        assert not handlers.requeue_due(app.key)
        assert handlers.requeue_due(app.key, now=handlers.requeue_deadlines[app.key])

        handlers.schedule_requeue(app, None)
        assert app.key not in handlers.requeue_deadlines
        assert not handlers.requeue_due(app.key)

    async def test_due_requeue_reconciles(self, memo, reconciler, persisted):
        handlers.schedule_requeue(AppConfig.from_body(make_body()), 0)
        await self.tick(memo, make_body())

        reconciler.reconcile.assert_awaited_once()
        persisted.status.assert_awaited_once()
        assert "shop/billing" not in handlers.requeue_deadlines

    async def test_requeue_after_interval_is_rearmed(self, memo, reconciler, persisted):
        reconciler.reconcile.return_value = ReconcileResult.update_status(3600.0)
        handlers.schedule_requeue(AppConfig.from_body(make_body()), 0)
        await self.tick(memo, make_body())
        assert not handlers.requeue_due("shop/billing")
        assert "shop/billing" in handlers.requeue_deadlines

    async def test_pending_requeue_waits(self, memo, reconciler, persisted):
        handlers.schedule_requeue(AppConfig.from_body(make_body()), 3600)
        await self.tick(memo, make_body())
        reconciler.reconcile.assert_not_awaited()

    async def test_nothing_requested(self, memo, reconciler, persisted):
        await self.tick(memo, make_body())
        reconciler.reconcile.assert_not_awaited()

    async def test_stopped_timer_does_nothing(self, memo, reconciler, persisted):
        handlers.schedule_requeue(AppConfig.from_body(make_body()), 0)
        await self.tick(memo, make_body(), stopped=True)
        reconciler.reconcile.assert_not_awaited()
