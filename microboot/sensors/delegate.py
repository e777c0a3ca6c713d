"""Sensor delegation for fan-out.

SensorDelegate routes every sensor event to each registered backend. A failing
backend is logged and never interrupts the operator or the other backends.
"""

from typing import Set, Dict, Optional, Any
import logging

from microboot.sensors.base import OperatorSensor

logger = logging.getLogger(__name__)


class SensorDelegate(OperatorSensor):
    """Delegate sensor that fans out events to multiple backends.

    State from start/complete pairs is tracked per sensor: the delegate returns
    a dict mapping each sensor to the state it produced.
    """

    def __init__(self) -> None:
        self._sensors: Set[OperatorSensor] = set()

    def add(self, sensor: OperatorSensor) -> None:
        logger.info(f"Adding sensor: {sensor.__class__.__name__}")
        self._sensors.add(sensor)

    def remove(self, sensor: OperatorSensor) -> None:
        logger.info(f"Removing sensor: {sensor.__class__.__name__}")
        self._sensors.discard(sensor)

    def clear(self) -> None:
        logger.info(f"Clearing {len(self._sensors)} sensors")
        self._sensors.clear()

    def __len__(self) -> int:
        return len(self._sensors)

    def _start(self, hook: str, *args: Any) -> Optional[Dict[OperatorSensor, Any]]:
        if not self._sensors:
            return None
        states = {}
        for sensor in self._sensors:
            try:
                state = getattr(sensor, hook)(*args)
                if state is not None:
                    states[sensor] = state
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.{hook}: {e}",
                    exc_info=True,
                )
        return states if states else None

    def _dispatch(self, hook: str, *args: Any, **kwargs: Any) -> None:
        for sensor in self._sensors:
            try:
                getattr(sensor, hook)(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.{hook}: {e}",
                    exc_info=True,
                )

    def _complete(
        self, hook: str, state: Optional[Dict[OperatorSensor, Any]], *args: Any, **kwargs: Any
    ) -> None:
        """Call `hook` on every sensor with its own state spliced in at `state=`."""
        for sensor in self._sensors:
            try:
                sensor_state = state.get(sensor) if state else None
                getattr(sensor, hook)(*args, state=sensor_state, **kwargs)
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.{hook}: {e}",
                    exc_info=True,
                )

    # =============================================================================
    # Reconciliation Lifecycle Hooks
    # =============================================================================

    def on_reconcile_start(
        self,
        app_name: str,
        namespace: str,
        generation: int,
        trigger_source: str,
    ) -> Optional[Dict[OperatorSensor, Any]]:
        return self._start(
            "on_reconcile_start", app_name, namespace, generation, trigger_source
        )

    def on_reconcile_complete(
        self,
        app_name: str,
        namespace: str,
        state: Optional[Dict[OperatorSensor, Any]],
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        self._complete(
            "on_reconcile_complete",
            state,
            app_name=app_name,
            namespace=namespace,
            success=success,
            error=error,
        )

    # =============================================================================
    # Resource Operation Hooks
    # =============================================================================

    def on_resource_sync_start(
        self,
        app_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
    ) -> Optional[Dict[OperatorSensor, Any]]:
        return self._start(
            "on_resource_sync_start", app_name, resource_name, namespace, resource_type
        )

    def on_resource_sync_complete(
        self,
        app_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        state: Optional[Dict[OperatorSensor, Any]],
        operation: str,
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        self._complete(
            "on_resource_sync_complete",
            state,
            app_name=app_name,
            resource_name=resource_name,
            namespace=namespace,
            resource_type=resource_type,
            operation=operation,
            success=success,
            error=error,
        )

    def on_resource_cleanup(
        self, app_name: str, namespace: str, resource_type: str, success: bool
    ) -> None:
        self._dispatch("on_resource_cleanup", app_name, namespace, resource_type, success)

    # =============================================================================
    # Feature Hooks
    # =============================================================================

    def on_secret_rotated(
        self, app_name: str, namespace: str, secret_name: str, strategy: str
    ) -> None:
        self._dispatch("on_secret_rotated", app_name, namespace, secret_name, strategy)

    def on_sidecar_injection(
        self, app_name: str, namespace: str, pod_name: str, success: bool
    ) -> None:
        self._dispatch("on_sidecar_injection", app_name, namespace, pod_name, success)
