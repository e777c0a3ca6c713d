import copy
import logging
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Set
from kubernetes_asyncio.client import ApiException, V1OwnerReference
from microboot.common.models.resource_ref import ResourceRef
from microboot.resources.base import BaseResource
from microboot.types.models import AppConfigSpec, AppConfigStatus
from microboot.types.schemas import AppConfigSpecSchema, AppConfigStatusSchema
from microboot.utils.helpers import now

CONDITION_RECONCILED = "Reconciled"
REASON_SUCCEEDED = "ReconciliationSucceeded"
REASON_FAILED = "ReconciliationFailed"


class AppConfig(BaseResource):
    """In-memory view of one AppConfig custom resource.

    Holds the identity, metadata, raw and loaded spec and the status of the
    object. Mutations stay local until `persist_resource` or `persist_status`
    writes them back.
    """

    KIND = "AppConfig"
    GROUP_NAME = "microservice.example.com"
    GROUP_VERSION = "v1"
    PLURAL_NAME = "appconfigs"
    FINALIZER = GROUP_NAME + "/finalizer"

    name: str
    namespace: str
    uid: Optional[str]
    generation: Optional[int]
    resource_version: Optional[str]
    deletion_timestamp: Optional[str]
    finalizers: List[str]
    labels: Dict[str, str]
    annotations: Dict[str, str]
    spec: Dict[str, Any]
    status: AppConfigStatus

    _removed_annotations: Set[str]
    _observed_spec: Dict[str, Any]
    _spec_model: Optional[AppConfigSpec]

    def __init__(
        self,
        name: str,
        namespace: str,
        spec: Dict[str, Any],
        status: Optional[Dict[str, Any]] = None,
        uid: Optional[str] = None,
        generation: Optional[int] = None,
        resource_version: Optional[str] = None,
        deletion_timestamp: Optional[str] = None,
        finalizers: Optional[List[str]] = None,
        labels: Optional[Dict[str, str]] = None,
        annotations: Optional[Dict[str, str]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.name = name
        self.namespace = namespace
        self.uid = uid
        self.generation = generation
        self.resource_version = resource_version
        self.deletion_timestamp = deletion_timestamp
        self.finalizers = list(finalizers or [])
        self.labels = dict(labels or {})
        self.annotations = dict(annotations or {})
        self.spec = copy.deepcopy(dict(spec or {}))
        self._observed_spec = copy.deepcopy(self.spec)
        self.status = AppConfigStatusSchema().load(
            dict(status) if isinstance(status, Mapping) else {}
        )
        self.logger = logger or logging.getLogger(__name__)
        self._removed_annotations = set()
        self._spec_model = None

    @classmethod
    def from_body(cls, body: Any, logger: Optional[logging.Logger] = None) -> "AppConfig":
        """Build from a raw object as delivered by the API server."""
        metadata = body.get("metadata", {}) or {}
        return AppConfig(
            name=metadata.get("name"),
            namespace=metadata.get("namespace"),
            spec=body.get("spec", {}) or {},
            status=body.get("status", {}) or {},
            uid=metadata.get("uid"),
            generation=metadata.get("generation"),
            resource_version=metadata.get("resourceVersion"),
            deletion_timestamp=metadata.get("deletionTimestamp"),
            finalizers=metadata.get("finalizers"),
            labels=metadata.get("labels"),
            annotations=metadata.get("annotations"),
            logger=logger,
        )

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def spec_model(self) -> AppConfigSpec:
        if self._spec_model is None:
            self._spec_model = AppConfigSpecSchema().load(self.spec)
        return self._spec_model

    def reload_spec(self) -> AppConfigSpec:
        """Reload the model after the raw spec was changed in place."""
        self._spec_model = None
        return self.spec_model

    @property
    def app_name(self) -> str:
        return self.spec_model.app_name

    # ----------------------------------------------------------------
    # Metadata
    # ----------------------------------------------------------------

    def is_deleting(self) -> bool:
        return self.deletion_timestamp is not None

    def has_finalizer(self) -> bool:
        return self.FINALIZER in self.finalizers

    def add_finalizer(self) -> None:
        if not self.has_finalizer():
            self.finalizers.append(self.FINALIZER)

    def remove_finalizer(self) -> None:
        self.finalizers = [f for f in self.finalizers if f != self.FINALIZER]

    def remove_annotation(self, key: str) -> Optional[str]:
        value = self.annotations.pop(key, None)
        if value is not None:
            self._removed_annotations.add(key)
        return value

    def owner_reference(self) -> V1OwnerReference:
        return V1OwnerReference(
            api_version=f"{self.GROUP_NAME}/{self.GROUP_VERSION}",
            kind=self.KIND,
            name=self.name,
            uid=self.uid,
            controller=True,
            block_owner_deletion=True,
        )

    # ----------------------------------------------------------------
    # Status
    # ----------------------------------------------------------------

    def record_created_resource(self, kind: str, namespace: str, name: str) -> str:
        ref = str(ResourceRef(kind, namespace, name))
        if ref not in self.status.created_resources:
            self.status.created_resources.append(ref)
        return ref

    def add_condition(self, success: bool, reason: str, message: str) -> Dict[str, str]:
        """Append a `Reconciled` condition. History is never rewritten."""
        condition = {
            "type": CONDITION_RECONCILED,
            "status": "True" if success else "False",
            "reason": reason,
            "message": message,
            "lastTransitionTime": now(),
        }
        self.status.conditions.append(condition)
        return condition

    def mark_succeeded(self) -> None:
        self.add_condition(True, REASON_SUCCEEDED, "AppConfig reconciled successfully")
        self.status.last_sync_time = now()

    def mark_failed(self, message: str) -> None:
        self.add_condition(False, REASON_FAILED, message)

    def dump_status(self) -> Dict[str, Any]:
        return AppConfigStatusSchema().dump(self.status)

    # ----------------------------------------------------------------
    # Persistence
    # ----------------------------------------------------------------

    def spec_changed(self) -> bool:
        return self.spec != self._observed_spec

    def prepare_resource_patch(self) -> Dict[str, Any]:
        """Merge-patch of metadata, plus the spec when it was changed locally.

        Carries the resource version the object was read at, so the write is
        rejected with 409 Conflict when someone else changed it in between.
        """
        annotations: Dict[str, Optional[str]] = dict(self.annotations)
        for key in self._removed_annotations:
            # merge-patch deletes keys set to null
            annotations[key] = None
        metadata: Dict[str, Any] = {
            "finalizers": list(self.finalizers),
            "labels": dict(self.labels),
            "annotations": annotations,
        }
        if self.resource_version is not None:
            metadata["resourceVersion"] = self.resource_version
        patch: Dict[str, Any] = {"metadata": metadata}
        if self.spec_changed():
            patch["spec"] = copy.deepcopy(self.spec)
        return patch

    async def persist_resource(self) -> None:
        """Write finalizers, labels, annotations and spec."""
        try:
            await self.custom_objects_api.patch_namespaced_custom_object(
                group=self.GROUP_NAME,
                version=self.GROUP_VERSION,
                namespace=self.namespace,
                plural=self.PLURAL_NAME,
                name=self.name,
                body=self.prepare_resource_patch(),
                _content_type="application/merge-patch+json",
            )
        except ApiException as ex:
            # Removing the last finalizer can race with the object disappearing
            if ex.status == 404 and self.is_deleting():
                self.logger.debug(f"{self.key} already removed")
                return
            raise
        self._removed_annotations.clear()
        self._observed_spec = copy.deepcopy(self.spec)

    async def persist_status(self) -> None:
        try:
            await self.custom_objects_api.patch_namespaced_custom_object_status(
                group=self.GROUP_NAME,
                version=self.GROUP_VERSION,
                namespace=self.namespace,
                plural=self.PLURAL_NAME,
                name=self.name,
                body={"status": self.dump_status()},
                _content_type="application/merge-patch+json",
            )
        except ApiException as ex:
            if ex.status == 404 and self.is_deleting():
                self.logger.debug(f"{self.key} already removed")
                return
            raise

