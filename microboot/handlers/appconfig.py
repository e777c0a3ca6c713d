import asyncio
import kopf
import time
from collections import defaultdict
from logging import Logger
from typing import Dict, Optional, Tuple
from kubernetes_asyncio.client import ApiException
from microboot.controller import AppConfigReconciler, ReconcileResult, UpdateAction
from microboot.resources.appconfig import AppConfig
from microboot.resources.base import BaseResource
from microboot.resources.sidecar import injection_registry
from microboot.types.settings import REQUEUE_POLL_INTERVAL_SECONDS

KOPF_ANNOTATION_PREFIX = "kopf.zalando.org/"

# Serializes event-driven and requeued reconciliations of the same object
reconciliation_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
# Fingerprint of the last state reconciled per object
handled_fingerprints: Dict[str, Tuple] = {}
# Monotonic time at which each object is due for another reconciliation
requeue_deadlines: Dict[str, float] = {}


def get_reconciler(memo: kopf.Memo) -> AppConfigReconciler:
    reconciler = getattr(memo, "reconciler", None)
    if reconciler is None:
        reconciler = AppConfigReconciler()
        memo.reconciler = reconciler
    return reconciler


def fingerprint(app: AppConfig) -> Tuple:
    """Everything that should trigger a reconciliation when it changes.

    Status is left out, so persisting status never re-triggers the object.
    """
    annotations = {
        k: v
        for k, v in app.annotations.items()
        if not k.startswith(KOPF_ANNOTATION_PREFIX)
    }
    return (
        app.generation,
        tuple(app.finalizers),
        tuple(sorted(app.labels.items())),
        tuple(sorted(annotations.items())),
        app.is_deleting(),
    )


def schedule_requeue(app: AppConfig, delay: Optional[float]) -> None:
    """Request another reconciliation of `app` after `delay` seconds.

    `None` cancels a pending request. `process_requeues` picks up due requests.
    """
    if delay is None:
        requeue_deadlines.pop(app.key, None)
        return
    app.logger.debug(f"Requeueing {app.key} in {delay}s")
    requeue_deadlines[app.key] = time.monotonic() + delay


def requeue_due(key: str, now: Optional[float] = None) -> bool:
    deadline = requeue_deadlines.get(key)
    if deadline is None:
        return False
    return deadline <= (time.monotonic() if now is None else now)


def forget(key: str) -> None:
    """Drop all per-object state once the object is gone."""
    requeue_deadlines.pop(key, None)
    handled_fingerprints.pop(key, None)
    injection_registry.unregister(key)
    lock = reconciliation_locks.get(key)
    if lock is not None and not lock.locked():
        del reconciliation_locks[key]


async def apply_result(app: AppConfig, result: ReconcileResult) -> None:
    if result.action is UpdateAction.UPDATE_RESOURCE:
        await app.persist_resource()
    elif result.action is UpdateAction.UPDATE_STATUS:
        await app.persist_status()


async def run_reconciliation(
    reconciler: AppConfigReconciler,
    app: AppConfig,
    trigger_source: str,
    event_fingerprint: Optional[Tuple] = None,
) -> Optional[ReconcileResult]:
    """Reconcile `app` and persist the outcome.

    With `event_fingerprint`, the run is skipped when that state was already
    handled while waiting for the lock.
    """
    async with reconciliation_locks[app.key]:
        if (
            event_fingerprint is not None
            and handled_fingerprints.get(app.key) == event_fingerprint
        ):
            return None

        sensor = BaseResource.sensor
        state = sensor.on_reconcile_start(
            app.name, app.namespace, app.generation, trigger_source
        )
        error: Optional[Exception] = None
        try:
            result = await reconciler.reconcile(app)
        except Exception as ex:
            app.logger.exception(f"Unhandled error reconciling {app.key}: {ex}")
            error = ex
            result = reconciler.on_error(app, ex)

        try:
            await apply_result(app, result)
        except ApiException as ex:
            if ex.status == 409:
                app.logger.info(f"{app.key} changed since it was read, reconciling again")
            else:
                app.logger.error(f"Failed to persist {app.key}: {ex}")
            handled_fingerprints.pop(app.key, None)
            schedule_requeue(app, reconciler.conf.server_error_requeue_seconds)
            sensor.on_reconcile_complete(app.name, app.namespace, state, False, error or ex)
            return result

        if result.action is UpdateAction.UPDATE_RESOURCE:
            # The write produces a new event that must be reconciled
            handled_fingerprints.pop(app.key, None)
        else:
            handled_fingerprints[app.key] = event_fingerprint or fingerprint(app)
        schedule_requeue(app, result.requeue_after)
        sensor.on_reconcile_complete(
            app.name, app.namespace, state, error is None, error
        )
        return result


@kopf.on.event(AppConfig.GROUP_NAME, AppConfig.GROUP_VERSION, AppConfig.PLURAL_NAME)
async def on_appconfig_event(type, body, logger: Logger, memo: kopf.Memo, **kwargs):
    """Entry point for every AppConfig watch event."""
    app = AppConfig.from_body(body, logger=logger)
    if type == "DELETED":
        logger.info(f"{app.key} deleted")
        forget(app.key)
        return

    current = fingerprint(app)
    if handled_fingerprints.get(app.key) == current:
        logger.debug(f"No relevant changes on {app.key}, skipping")
        return

    await run_reconciliation(
        get_reconciler(memo),
        app,
        trigger_source=(type or "listing").lower(),
        event_fingerprint=current,
    )


@kopf.timer(
    AppConfig.GROUP_NAME,
    AppConfig.GROUP_VERSION,
    AppConfig.PLURAL_NAME,
    initial_delay=REQUEUE_POLL_INTERVAL_SECONDS,
    interval=REQUEUE_POLL_INTERVAL_SECONDS,
)
async def process_requeues(body, logger: Logger, memo: kopf.Memo, stopped, **kwargs):
    """Reconcile the object again once its requeue delay has elapsed."""
    if stopped:
        return
    app = AppConfig.from_body(body, logger=logger)
    if not requeue_due(app.key):
        return
    requeue_deadlines.pop(app.key, None)
    await run_reconciliation(get_reconciler(memo), app, trigger_source="requeue")
