import mmh3
import hashlib
from functools import cached_property
from typing import Any, Awaitable, Callable, Dict, Optional, Union
from microboot.common.models.labels import Labels
from microboot.sensors import SensorDelegate
from microboot.types.settings import Settings
from microboot.utils.errors import already_exists_error, retryable_error
from microboot.utils.helpers import canonicalize_dict
from microboot.utils.retry import RetryPolicy
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    CoreV1Api,
    CustomObjectsApi,
    NetworkingV1Api,
    RbacAuthorizationV1Api,
    V1ConfigMap,
    V1NetworkPolicy,
    V1Role,
    V1RoleBinding,
    V1Secret,
    V1ServiceAccount,
)


class BaseResource:
    """Shared plumbing for everything that talks to the cluster."""

    conf: Settings = Settings()
    shared_api_client: Optional[ApiClient] = None
    sensor: SensorDelegate = SensorDelegate()

    @property
    def operator_name(self) -> str:
        return self.conf.operator_name

    @cached_property
    def core_v1_api(self) -> CoreV1Api:
        return CoreV1Api(self.shared_api_client)

    @cached_property
    def rbac_v1_api(self) -> RbacAuthorizationV1Api:
        return RbacAuthorizationV1Api(self.shared_api_client)

    @cached_property
    def networking_v1_api(self) -> NetworkingV1Api:
        return NetworkingV1Api(self.shared_api_client)

    @cached_property
    def custom_objects_api(self) -> CustomObjectsApi:
        return CustomObjectsApi(self.shared_api_client)

    @property
    def write_retry(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.conf.retry_max_retries,
            initial_delay=self.conf.retry_initial_delay_seconds,
            max_delay=self.conf.retry_max_delay_seconds,
        )

    @property
    def cleanup_retry(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.conf.retry_max_retries,
            initial_delay=self.conf.retry_initial_delay_seconds,
            max_delay=self.conf.cleanup_retry_max_delay_seconds,
        )

    def default_labels(self, app_name: str) -> Labels:
        return Labels.generate_default_labels(app_name, self.operator_name)

    def is_managed(self, obj: Any) -> bool:
        """True when `obj` carries this operator's `managed-by` label."""
        metadata = getattr(obj, "metadata", None)
        labels = getattr(metadata, "labels", None) if metadata else None
        return Labels(labels).is_managed_by(self.operator_name)

    def compute_hash(self, data: Any) -> str:
        """Compute a murmur3 hash."""
        if isinstance(data, dict):
            _data = canonicalize_dict(data)
        elif isinstance(data, str):
            _data = data.encode()
        else:
            raise ValueError(f"Hash of {type(data)} is not supported.")
        mumur_str = str(mmh3.hash128(_data))
        full_hash = hashlib.sha256(mumur_str.encode("utf-8")).hexdigest()
        # 16 characters keep the annotation readable
        return full_hash[:16]

    def prepare_hash_annotation(self, hash: Union[str, int]) -> Dict[str, str]:
        return {Labels.RESOURCE_HASH_ANNOTATION: str(hash)}

    def stored_hash(self, obj: Any) -> Optional[str]:
        annotations = getattr(obj.metadata, "annotations", None) or {}
        return annotations.get(Labels.RESOURCE_HASH_ANNOTATION)

    # ----------------------------------------------------------------
    # ConfigMaps
    # ----------------------------------------------------------------

    async def fetch_config_map(self, name: str, namespace: str) -> Optional[V1ConfigMap]:
        try:
            return await self.core_v1_api.read_namespaced_config_map(
                name=name, namespace=namespace
            )
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def create_config_map(self, namespace: str, config_map: V1ConfigMap) -> None:
        try:
            await self.core_v1_api.create_namespaced_config_map(
                namespace=namespace, body=config_map
            )
        except ApiException as ex:
            if already_exists_error(ex):
                await self.replace_config_map(
                    config_map.metadata.name, namespace, config_map
                )
            else:
                raise

    async def replace_config_map(
        self, name: str, namespace: str, config_map: V1ConfigMap
    ) -> None:
        await self.core_v1_api.replace_namespaced_config_map(
            name=name, namespace=namespace, body=config_map
        )

    async def delete_config_map(self, name: str, namespace: str) -> None:
        try:
            await self.core_v1_api.delete_namespaced_config_map(
                name=name, namespace=namespace
            )
        except ApiException as ex:
            if ex.status != 404:
                raise

    # ----------------------------------------------------------------
    # Secrets
    # ----------------------------------------------------------------

    async def fetch_secret(self, name: str, namespace: str) -> Optional[V1Secret]:
        try:
            return await self.core_v1_api.read_namespaced_secret(
                name=name, namespace=namespace
            )
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def create_secret(self, namespace: str, secret: V1Secret) -> None:
        await self.core_v1_api.create_namespaced_secret(namespace=namespace, body=secret)

    async def replace_secret(self, name: str, namespace: str, secret: V1Secret) -> None:
        await self.core_v1_api.replace_namespaced_secret(
            name=name, namespace=namespace, body=secret
        )

    async def delete_secret(self, name: str, namespace: str) -> None:
        try:
            await self.core_v1_api.delete_namespaced_secret(name=name, namespace=namespace)
        except ApiException as ex:
            if ex.status != 404:
                raise

    # ----------------------------------------------------------------
    # ServiceAccounts
    # ----------------------------------------------------------------

    async def fetch_service_account(
        self, name: str, namespace: str
    ) -> Optional[V1ServiceAccount]:
        try:
            return await self.core_v1_api.read_namespaced_service_account(
                name=name, namespace=namespace
            )
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def create_service_account(
        self, namespace: str, service_account: V1ServiceAccount
    ) -> None:
        try:
            await self.core_v1_api.create_namespaced_service_account(
                namespace=namespace, body=service_account
            )
        except ApiException as ex:
            # Created concurrently; service accounts are never replaced
            if not already_exists_error(ex):
                raise

    async def delete_service_account(self, name: str, namespace: str) -> None:
        try:
            await self.core_v1_api.delete_namespaced_service_account(
                name=name, namespace=namespace
            )
        except ApiException as ex:
            if ex.status != 404:
                raise

    # ----------------------------------------------------------------
    # Roles
    # ----------------------------------------------------------------

    async def fetch_role(self, name: str, namespace: str) -> Optional[V1Role]:
        try:
            return await self.rbac_v1_api.read_namespaced_role(
                name=name, namespace=namespace
            )
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def create_role(self, namespace: str, role: V1Role) -> None:
        try:
            await self.rbac_v1_api.create_namespaced_role(namespace=namespace, body=role)
        except ApiException as ex:
            if already_exists_error(ex):
                await self.replace_role(role.metadata.name, namespace, role)
            else:
                raise

    async def replace_role(self, name: str, namespace: str, role: V1Role) -> None:
        await self.rbac_v1_api.replace_namespaced_role(
            name=name, namespace=namespace, body=role
        )

    async def delete_role(self, name: str, namespace: str) -> None:
        try:
            await self.rbac_v1_api.delete_namespaced_role(name=name, namespace=namespace)
        except ApiException as ex:
            if ex.status != 404:
                raise

    # ----------------------------------------------------------------
    # RoleBindings
    # ----------------------------------------------------------------

    async def fetch_role_binding(
        self, name: str, namespace: str
    ) -> Optional[V1RoleBinding]:
        try:
            return await self.rbac_v1_api.read_namespaced_role_binding(
                name=name, namespace=namespace
            )
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def create_role_binding(
        self, namespace: str, role_binding: V1RoleBinding
    ) -> None:
        try:
            await self.rbac_v1_api.create_namespaced_role_binding(
                namespace=namespace, body=role_binding
            )
        except ApiException as ex:
            if already_exists_error(ex):
                await self.replace_role_binding(
                    role_binding.metadata.name, namespace, role_binding
                )
            else:
                raise

    async def replace_role_binding(
        self, name: str, namespace: str, role_binding: V1RoleBinding
    ) -> None:
        await self.rbac_v1_api.replace_namespaced_role_binding(
            name=name, namespace=namespace, body=role_binding
        )

    async def delete_role_binding(self, name: str, namespace: str) -> None:
        try:
            await self.rbac_v1_api.delete_namespaced_role_binding(
                name=name, namespace=namespace
            )
        except ApiException as ex:
            if ex.status != 404:
                raise

    # ----------------------------------------------------------------
    # NetworkPolicies
    # ----------------------------------------------------------------

    async def fetch_network_policy(
        self, name: str, namespace: str
    ) -> Optional[V1NetworkPolicy]:
        try:
            return await self.networking_v1_api.read_namespaced_network_policy(
                name=name, namespace=namespace
            )
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def create_network_policy(
        self, namespace: str, network_policy: V1NetworkPolicy
    ) -> None:
        try:
            await self.networking_v1_api.create_namespaced_network_policy(
                namespace=namespace, body=network_policy
            )
        except ApiException as ex:
            if already_exists_error(ex):
                await self.replace_network_policy(
                    network_policy.metadata.name, namespace, network_policy
                )
            else:
                raise

    async def replace_network_policy(
        self, name: str, namespace: str, network_policy: V1NetworkPolicy
    ) -> None:
        await self.networking_v1_api.replace_namespaced_network_policy(
            name=name, namespace=namespace, body=network_policy
        )

    async def delete_network_policy(self, name: str, namespace: str) -> None:
        try:
            await self.networking_v1_api.delete_namespaced_network_policy(
                name=name, namespace=namespace
            )
        except ApiException as ex:
            if ex.status != 404:
                raise

    # ----------------------------------------------------------------
    # Pods
    # ----------------------------------------------------------------

    async def patch_pod(self, name: str, namespace: str, body: Dict[str, Any]) -> None:
        await self.core_v1_api.patch_namespaced_pod(
            name=name, namespace=namespace, body=body
        )

    # ----------------------------------------------------------------
    # Child resource writes
    # ----------------------------------------------------------------

    async def apply_child(
        self,
        app: Any,
        kind: str,
        obj: Any,
        ensure: Callable[[Any, Any], Awaitable[str]],
        retry: bool = True,
    ) -> str:
        """Run `ensure(app, obj)` and record the child on `app` when it is ours.

        `ensure` returns the operation performed; "foreign" means an object of
        the same name exists without our `managed-by` label and was left alone.
        """
        name = obj.metadata.name
        state = self.sensor.on_resource_sync_start(app.name, name, app.namespace, kind)
        try:
            if retry:
                operation = await self.write_retry.execute(
                    lambda: ensure(app, obj), retry_on=retryable_error
                )
            else:
                operation = await ensure(app, obj)
        except Exception as ex:
            self.sensor.on_resource_sync_complete(
                app.name, name, app.namespace, kind, state, "sync", False, ex
            )
            raise
        self.sensor.on_resource_sync_complete(
            app.name, name, app.namespace, kind, state, operation, True
        )
        if operation == "foreign":
            app.logger.warning(
                f"{kind} {app.namespace}/{name} exists and is not managed by "
                f"{self.operator_name}, leaving it untouched"
            )
        else:
            app.record_created_resource(kind, app.namespace, name)
            app.logger.debug(f"{kind} {app.namespace}/{name}: {operation}")
        return operation
