import kopf
from logging import Logger
from microboot.resources.base import BaseResource
from microboot.resources.sidecar import SidecarInjector, injection_registry


def get_injector(memo: kopf.Memo) -> SidecarInjector:
    injector = getattr(memo, "injector", None)
    if injector is None:
        injector = SidecarInjector(injection_registry)
        memo.injector = injector
    return injector


@kopf.on.event("", "v1", "pods")
async def on_pod_event(type, body, logger: Logger, memo: kopf.Memo, **kwargs):
    """Inject registered sidecars into newly created pods.

    Pods found by the initial listing arrive without an event type, so pods
    that exist when the operator starts are never injected.
    """
    if type != "ADDED" or not BaseResource.conf.sidecar_injection_enabled:
        return
    try:
        await get_injector(memo).handle_pod_created(body)
    except Exception as ex:
        metadata = body.get("metadata") or {}
        logger.exception(
            f"Error handling pod {metadata.get('namespace')}/{metadata.get('name')}: {ex}"
        )
