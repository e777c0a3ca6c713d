"""Reconciliation of AppConfig resources.

An AppConfig moves through four states:

    New -> Active -> Terminating -> Finalized

New objects get the finalizer. Active objects have their child resources
converged toward the desired state in `.spec`. Terminating objects have every recorded child
deleted before the finalizer is released. Finalized objects need nothing.

`AppConfigReconciler.reconcile` computes a `ReconcileResult`; persisting it is
left to the caller.
"""

from enum import Enum
from typing import Awaitable, Callable, Dict, NamedTuple, Optional
from kubernetes_asyncio.client import ApiException
from microboot.common.models.resource_ref import ResourceKind, ResourceRef
from microboot.resources.appconfig import AppConfig
from microboot.resources.base import BaseResource
from microboot.resources.config_maps import ConfigMapSynchronizer
from microboot.resources.network_policy import NetworkPolicySynchronizer
from microboot.resources.rbac import RBACSynchronizer
from microboot.resources.secret import SecretRotator, rotation_due
from microboot.resources.sidecar import InjectionRegistry, injection_registry
from microboot.upgrade import upgrade_schema
from microboot.utils.errors import (
    ErrorKind,
    api_error_message,
    classify_error,
    retryable_error,
)
from microboot.utils.helpers import now

SECONDS_PER_HOUR = 3600


class LifecycleState(Enum):
    NEW = "New"
    ACTIVE = "Active"
    TERMINATING = "Terminating"
    FINALIZED = "Finalized"


def lifecycle_state(app: AppConfig) -> LifecycleState:
    if app.is_deleting():
        return LifecycleState.TERMINATING if app.has_finalizer() else LifecycleState.FINALIZED
    return LifecycleState.ACTIVE if app.has_finalizer() else LifecycleState.NEW


class UpdateAction(Enum):
    NO_UPDATE = "no-update"
    #: persist metadata and spec
    UPDATE_RESOURCE = "update-resource"
    #: persist the status subresource
    UPDATE_STATUS = "update-status"


class ReconcileResult(NamedTuple):
    action: UpdateAction
    requeue_after: Optional[float] = None

    @classmethod
    def no_update(cls) -> "ReconcileResult":
        return cls(UpdateAction.NO_UPDATE)

    @classmethod
    def update_resource(cls) -> "ReconcileResult":
        return cls(UpdateAction.UPDATE_RESOURCE)

    @classmethod
    def update_status(cls, requeue_after: Optional[float] = None) -> "ReconcileResult":
        return cls(UpdateAction.UPDATE_STATUS, requeue_after)


class AppConfigReconciler(BaseResource):
    """Drives AppConfig objects through their lifecycle."""

    def __init__(
        self,
        config_maps: Optional[ConfigMapSynchronizer] = None,
        rbac: Optional[RBACSynchronizer] = None,
        network_policies: Optional[NetworkPolicySynchronizer] = None,
        secrets: Optional[SecretRotator] = None,
        registry: Optional[InjectionRegistry] = None,
    ):
        self.config_maps = config_maps or ConfigMapSynchronizer()
        self.rbac = rbac or RBACSynchronizer()
        self.network_policies = network_policies or NetworkPolicySynchronizer()
        self.secrets = secrets or SecretRotator()
        self.registry = registry if registry is not None else injection_registry

    @property
    def deleters(self) -> Dict[ResourceKind, Callable[[str, str], Awaitable[None]]]:
        return {
            ResourceKind.CONFIG_MAP: self.delete_config_map,
            ResourceKind.SECRET: self.delete_secret,
            ResourceKind.SERVICE_ACCOUNT: self.delete_service_account,
            ResourceKind.ROLE: self.delete_role,
            ResourceKind.ROLE_BINDING: self.delete_role_binding,
            ResourceKind.NETWORK_POLICY: self.delete_network_policy,
        }

    async def reconcile(self, app: AppConfig) -> ReconcileResult:
        state = lifecycle_state(app)
        app.logger.debug(f"Reconciling {app.key} in state {state.value}")
        if state is LifecycleState.FINALIZED:
            return ReconcileResult.no_update()
        if state is LifecycleState.TERMINATING:
            return await self.finalize(app)
        if state is LifecycleState.NEW:
            app.add_finalizer()
            app.logger.info(f"Added finalizer to {app.key}")
            return ReconcileResult.update_resource()
        return await self.reconcile_active(app)

    async def reconcile_active(self, app: AppConfig) -> ReconcileResult:
        try:
            if upgrade_schema(app):
                app.logger.info(f"Upgraded {app.key} to the current schema")
                return ReconcileResult.update_resource()
            return await self.converge(app)
        except ApiException as ex:
            kind = classify_error(ex)
            app.logger.error(f"Kubernetes API error reconciling {app.key}: {ex}")
            app.mark_failed(f"Kubernetes API error: {api_error_message(ex)}")
            if kind is ErrorKind.SERVER:
                return ReconcileResult.update_status(self.conf.server_error_requeue_seconds)
            if kind is ErrorKind.THROTTLED:
                return ReconcileResult.update_status(self.conf.throttled_requeue_seconds)
            return ReconcileResult.update_status()
        except Exception as ex:
            app.logger.exception(f"Error reconciling {app.key}: {ex}")
            app.mark_failed(f"Reconciliation failed: {ex}")
            return ReconcileResult.update_status()

    async def converge(self, app: AppConfig) -> ReconcileResult:
        spec = app.spec_model

        await self.write_retry.execute(
            lambda: self.config_maps.sync(app), retry_on=retryable_error
        )

        if spec.rbac is not None:
            await self.rbac.sync(app)

        if spec.network_policy_enabled():
            await self.network_policies.sync(app)

        if spec.injection_enabled():
            self.registry.register(app)
            app.logger.info(f"Registered {app.key} for sidecar injection")
        elif self.registry.unregister(app.key) is not None:
            app.logger.info(f"Unregistered {app.key} from sidecar injection")

        requeue_after = None
        if spec.rotation_enabled():
            rotation = spec.secret_rotation
            if rotation_due(app.status.last_secret_rotation_time, rotation.interval_hours):
                await self.secrets.rotate(app)
                app.status.last_secret_rotation_time = now()
            requeue_after = float(rotation.interval_hours * SECONDS_PER_HOUR)

        app.mark_succeeded()
        app.logger.info(f"Reconciled {app.key}")
        return ReconcileResult.update_status(requeue_after)

    async def cleanup_resource(self, app: AppConfig, ref: ResourceRef) -> None:
        delete = self.deleters[ref.resource_kind]
        await self.cleanup_retry.execute(
            lambda: delete(ref.name, ref.namespace), retry_on=retryable_error
        )

    async def finalize(self, app: AppConfig) -> ReconcileResult:
        """Delete every recorded child resource, then release the finalizer."""
        try:
            self.registry.unregister(app.key)
            for entry in list(app.status.created_resources):
                ref = ResourceRef.parse(entry)
                if ref is None:
                    app.logger.warning(f"Skipping malformed resource reference '{entry}'")
                    continue
                if ref.resource_kind is ResourceKind.UNKNOWN:
                    app.logger.warning(f"Skipping resource of unknown kind '{entry}'")
                    continue
                try:
                    await self.cleanup_resource(app, ref)
                except Exception as ex:
                    app.logger.warning(f"Failed to delete {ref}: {ex}")
                    self.sensor.on_resource_cleanup(app.name, ref.namespace, ref.kind, False)
                    continue
                app.logger.info(f"Deleted {ref}")
                self.sensor.on_resource_cleanup(app.name, ref.namespace, ref.kind, True)
            app.remove_finalizer()
            app.logger.info(f"Finalized {app.key}")
            return ReconcileResult.update_resource()
        except Exception as ex:
            app.logger.exception(f"Finalization of {app.key} failed: {ex}")
            app.mark_failed(f"Finalization failed: {ex}")
            return ReconcileResult.update_status(self.conf.server_error_requeue_seconds)

    def on_error(self, app: AppConfig, error: Exception) -> ReconcileResult:
        """Record a failure that escaped `reconcile`."""
        app.mark_failed(f"Reconciliation failed: {error}")
        return ReconcileResult.update_status()
