import base64
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from kubernetes_asyncio.client import V1ObjectMeta, V1Secret
from microboot.common.models.labels import Labels
from microboot.common.models.resource_ref import ResourceKind
from microboot.resources.appconfig import AppConfig
from microboot.resources.base import BaseResource
from microboot.rotation import generate_secret_data
from microboot.utils.errors import retryable_error
from microboot.utils.helpers import iso_datestr_to_datetime, now, utc_now

logger = logging.getLogger(__name__)


def rotation_due(
    last_rotation: Optional[str], interval_hours: int, current: Optional[datetime] = None
) -> bool:
    """True when credentials must be rotated.

    Missing or unreadable timestamps count as due.
    """
    if not last_rotation:
        return True
    try:
        last = iso_datestr_to_datetime(last_rotation)
    except ValueError:
        logger.warning(f"Unreadable last rotation time '{last_rotation}', rotating now")
        return True
    current = current or utc_now()
    return current > last + timedelta(hours=interval_hours)


def rotation_targets(app: AppConfig) -> List[str]:
    sources = app.spec_model.secret_rotation.sources
    return list(sources) if sources else [f"{app.app_name}-secrets"]


class SecretRotator(BaseResource):
    """Writes freshly generated credentials into the rotation target secrets."""

    def prepare_secret(self, app: AppConfig, name: str, data: Dict[str, str]) -> V1Secret:
        return V1Secret(
            api_version="v1",
            kind="Secret",
            type="Opaque",
            metadata=V1ObjectMeta(
                name=name,
                namespace=app.namespace,
                labels=self.default_labels(app.app_name).as_dict(),
                annotations={Labels.ROTATION_TIMESTAMP_ANNOTATION: now()},
                owner_references=[app.owner_reference()],
            ),
            string_data=data,
        )

    def merge_secret(self, existing: V1Secret, data: Dict[str, str]) -> V1Secret:
        """Overlay `data` onto `existing`, keeping keys that were not regenerated."""
        merged = dict(existing.data or {})
        for key, value in data.items():
            merged[key] = base64.b64encode(value.encode("utf-8")).decode("ascii")
        existing.data = merged
        annotations = dict(existing.metadata.annotations or {})
        annotations[Labels.ROTATION_TIMESTAMP_ANNOTATION] = now()
        existing.metadata.annotations = annotations
        return existing

    async def write_secret(self, app: AppConfig, name: str, data: Dict[str, str]) -> str:
        """Create or update one secret. Returns the operation performed."""
        existing = await self.fetch_secret(name, app.namespace)
        if existing is None:
            await self.create_secret(app.namespace, self.prepare_secret(app, name, data))
            return "create"
        await self.replace_secret(name, app.namespace, self.merge_secret(existing, data))
        return "replace"

    async def rotate(self, app: AppConfig) -> List[str]:
        """Rotate every target secret of `app`. Returns the secret names."""
        rotation = app.spec_model.secret_rotation
        rotated = []
        for name in rotation_targets(app):
            data = generate_secret_data(
                rotation.strategy, app.app_name, app.namespace, rotation.strategy_config
            )
            state = self.sensor.on_resource_sync_start(
                app.name, name, app.namespace, ResourceKind.SECRET.value
            )
            try:
                operation = await self.write_retry.execute(
                    lambda: self.write_secret(app, name, data), retry_on=retryable_error
                )
            except Exception as ex:
                self.sensor.on_resource_sync_complete(
                    app.name, name, app.namespace, ResourceKind.SECRET.value,
                    state, "rotate", False, ex,
                )
                raise
            self.sensor.on_resource_sync_complete(
                app.name, name, app.namespace, ResourceKind.SECRET.value,
                state, operation, True,
            )
            self.sensor.on_secret_rotated(
                app.name, app.namespace, name, rotation.strategy or "default"
            )
            app.record_created_resource(ResourceKind.SECRET.value, app.namespace, name)
            app.logger.info(f"Rotated secret {app.namespace}/{name} ({operation})")
            rotated.append(name)
        return rotated
