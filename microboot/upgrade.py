"""Upgrades AppConfig objects written by older operator releases.

Objects carry their schema version in the `microservice.example.com/version`
label. Older versions kept some settings in annotations; each upgrade step moves
them into `.spec`. Steps run in release order starting at the object's
version, so an object several releases behind passes through every later step.
"""

from typing import Callable, List, Tuple
from microboot.common.models.labels import Labels
from microboot.resources.appconfig import AppConfig

CURRENT_VERSION = "v1"
VERSION_LABEL = Labels.VERSION_LABEL

ENABLE_NETWORK_POLICY_ANNOTATION = "enableNetworkPolicy"
SECRET_ROTATION_SOURCE_ANNOTATION = "secretRotationSource"


def upgrade_from_v1alpha1(app: AppConfig) -> None:
    """Network policy toggle moved from an annotation into `spec.networkPolicy`."""
    if app.spec.get("networkPolicy") is not None:
        return
    value = app.remove_annotation(ENABLE_NETWORK_POLICY_ANNOTATION)
    if value is not None and value.strip().lower() == "true":
        app.spec["networkPolicy"] = {"enabled": True}


def upgrade_from_v1beta1(app: AppConfig) -> None:
    """A single rotation source moved from an annotation into `spec.secretRotation.sources`."""
    rotation = app.spec.get("secretRotation")
    if rotation is None:
        return
    value = app.remove_annotation(SECRET_ROTATION_SOURCE_ANNOTATION)
    if value:
        rotation["sources"] = [value]


UPGRADE_STEPS: List[Tuple[str, Callable[[AppConfig], None]]] = [
    ("v1alpha1", upgrade_from_v1alpha1),
    ("v1beta1", upgrade_from_v1beta1),
]


def upgrade_schema(app: AppConfig) -> bool:
    """Bring `app` to the current schema version in place.

    Returns True when the object was converted and must be persisted before
    reconciliation continues. An object without a version label is only
    stamped with the current version.
    """
    version = app.labels.get(VERSION_LABEL)
    if version is None:
        app.labels[VERSION_LABEL] = CURRENT_VERSION
        return False
    if version == CURRENT_VERSION:
        return False

    versions = [v for v, _ in UPGRADE_STEPS]
    if version in versions:
        steps = UPGRADE_STEPS[versions.index(version):]
    else:
        app.logger.warning(
            f"Unknown schema version '{version}' on {app.key}, applying all upgrades"
        )
        steps = UPGRADE_STEPS

    for step_version, step in steps:
        app.logger.info(f"Upgrading {app.key} from schema {step_version}")
        step(app)

    app.labels[VERSION_LABEL] = CURRENT_VERSION
    app.reload_spec()
    return True
