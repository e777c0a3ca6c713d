"""Sidecar injection into newly created pods.

AppConfigs with sidecar injection enabled are kept in an `InjectionRegistry`.
`SidecarInjector` patches the sidecar of the first registered AppConfig that
matches a newly created pod into that pod.
"""

import logging
import threading
from collections import OrderedDict
from typing import Any, Dict, List, Optional
from kubernetes_asyncio.client import (
    ApiException,
    V1Container,
    V1EmptyDirVolumeSource,
    V1EnvVar,
    V1Volume,
    V1VolumeMount,
)
from microboot.common.models.labels import Labels
from microboot.resources.appconfig import AppConfig
from microboot.resources.base import BaseResource

logger = logging.getLogger(__name__)


class InjectionRegistry:
    """AppConfigs eligible for sidecar injection, keyed by `namespace/name`.

    Written from reconciliations and read from the pod event handler, so every access
    goes through a lock and readers iterate over snapshots.
    """

    def __init__(self) -> None:
        self._entries: "OrderedDict[str, AppConfig]" = OrderedDict()
        self._lock = threading.Lock()

    def register(self, app: AppConfig) -> None:
        with self._lock:
            self._entries[app.key] = app

    def unregister(self, key: str) -> Optional[AppConfig]:
        with self._lock:
            return self._entries.pop(key, None)

    def get(self, key: str) -> Optional[AppConfig]:
        with self._lock:
            return self._entries.get(key)

    def snapshot(self) -> List[AppConfig]:
        """Registered AppConfigs in registration order."""
        with self._lock:
            return list(self._entries.values())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


#: Registry shared by the reconciler and the pod watch
injection_registry = InjectionRegistry()


def pod_metadata(pod: Dict[str, Any]) -> Dict[str, Any]:
    return pod.get("metadata") or {}


def pod_containers(pod: Dict[str, Any]) -> List[Dict[str, Any]]:
    return (pod.get("spec") or {}).get("containers") or []


def should_inject(pod: Dict[str, Any], app: AppConfig) -> bool:
    """Whether the sidecar of `app` belongs in `pod`.

    An empty selector never matches. A pod that already runs a container with
    the sidecar name is left alone.
    """
    metadata = pod_metadata(pod)
    if metadata.get("namespace") != app.namespace:
        return False
    selector = Labels(app.spec_model.sidecar_injection.selector_labels)
    if not len(selector):
        return False
    pod_labels = metadata.get("labels")
    if not pod_labels or not Labels(pod_labels).contains(selector):
        return False
    sidecar_name = app.spec_model.sidecar_name()
    return all(c.get("name") != sidecar_name for c in pod_containers(pod))


def build_sidecar_container(app: AppConfig) -> V1Container:
    injection = app.spec_model.sidecar_injection
    return V1Container(
        name=app.spec_model.sidecar_name(),
        image=injection.image,
        env=[V1EnvVar(name=k, value=v) for k, v in injection.env.items()] or None,
        volume_mounts=[
            V1VolumeMount(name=volume, mount_path=path)
            for volume, path in injection.volume_mounts.items()
        ]
        or None,
    )


def build_injection_patch(pod: Dict[str, Any], app: AppConfig) -> Dict[str, Any]:
    """Pod patch appending the sidecar container and its emptyDir volumes."""
    spec = pod.get("spec") or {}
    containers: List[Any] = list(spec.get("containers") or [])
    containers.append(build_sidecar_container(app))
    patch: Dict[str, Any] = {"spec": {"containers": containers}}
    volume_names = app.spec_model.sidecar_injection.volumes
    if volume_names:
        volumes: List[Any] = list(spec.get("volumes") or [])
        volumes.extend(
            V1Volume(name=name, empty_dir=V1EmptyDirVolumeSource())
            for name in volume_names
        )
        patch["spec"]["volumes"] = volumes
    return patch


class SidecarInjector(BaseResource):
    """Injects registered sidecars into newly created pods."""

    registry: InjectionRegistry

    def __init__(self, registry: Optional[InjectionRegistry] = None):
        self.registry = registry if registry is not None else injection_registry

    def find_match(self, pod: Dict[str, Any]) -> Optional[AppConfig]:
        for app in self.registry.snapshot():
            if should_inject(pod, app):
                return app
        return None

    async def inject(self, pod: Dict[str, Any], app: AppConfig) -> bool:
        metadata = pod_metadata(pod)
        name, namespace = metadata.get("name"), metadata.get("namespace")
        try:
            await self.patch_pod(name, namespace, build_injection_patch(pod, app))
        except ApiException as ex:
            logger.error(f"Failed to inject sidecar of {app.key} into pod {namespace}/{name}: {ex}")
            self.sensor.on_sidecar_injection(app.name, namespace, name, False)
            return False
        logger.info(f"Injected sidecar of {app.key} into pod {namespace}/{name}")
        self.sensor.on_sidecar_injection(app.name, namespace, name, True)
        return True

    async def handle_pod_created(self, pod: Dict[str, Any]) -> Optional[AppConfig]:
        """Inject the first matching sidecar into `pod`. Returns the AppConfig used."""
        if pod_metadata(pod).get("deletionTimestamp"):
            return None
        app = self.find_match(pod)
        if app is None:
            return None
        return app if await self.inject(pod, app) else None

