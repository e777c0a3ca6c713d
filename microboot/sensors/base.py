"""Base sensor class for operator monitoring.

OperatorSensor exposes lifecycle hooks for the events the operator produces.
Every hook is a no-op, so a sensor only overrides the events it cares about.

Hooks for multi-phase operations come in pairs: ``on_X_start()`` returns an
optional state dict that is handed back to ``on_X_complete()``.
"""

from typing import Dict, Optional, Any


class OperatorSensor:
    """Base sensor class for AppConfig operator monitoring.

    Example:
        class LoggingSensor(OperatorSensor):
            def on_reconcile_start(self, app_name, namespace, generation, trigger_source):
                return {'start_time': time.time()}

            def on_reconcile_complete(self, app_name, namespace, state, success, error=None):
                logger.info(f"Reconciled {app_name} in {time.time() - state['start_time']}s")
    """

    # =============================================================================
    # Reconciliation Lifecycle Hooks
    # =============================================================================

    def on_reconcile_start(
        self,
        app_name: str,
        namespace: str,
        generation: int,
        trigger_source: str,
    ) -> Optional[Dict[str, Any]]:
        """Called when a reconciliation begins.

        Args:
            app_name: AppConfig resource name
            namespace: Kubernetes namespace
            generation: Resource generation number
            trigger_source: What triggered reconciliation (event type or requeue)

        Returns:
            Optional state dict passed to on_reconcile_complete
        """
        pass

    def on_reconcile_complete(
        self,
        app_name: str,
        namespace: str,
        state: Optional[Dict[str, Any]],
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Called when a reconciliation completes."""
        pass

    # =============================================================================
    # Resource Operation Hooks
    # =============================================================================

    def on_resource_sync_start(
        self,
        app_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
    ) -> Optional[Dict[str, Any]]:
        """Called before a child resource is written."""
        pass

    def on_resource_sync_complete(
        self,
        app_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        state: Optional[Dict[str, Any]],
        operation: str,
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Called after a child resource write.

        Args:
            operation: One of create, replace, skip
        """
        pass

    def on_resource_cleanup(
        self,
        app_name: str,
        namespace: str,
        resource_type: str,
        success: bool,
    ) -> None:
        """Called for every child resource deleted during finalization."""
        pass

    # =============================================================================
    # Feature Hooks
    # =============================================================================

    def on_secret_rotated(
        self,
        app_name: str,
        namespace: str,
        secret_name: str,
        strategy: str,
    ) -> None:
        """Called after new credentials were written to a secret."""
        pass

    def on_sidecar_injection(
        self,
        app_name: str,
        namespace: str,
        pod_name: str,
        success: bool,
    ) -> None:
        """Called after a sidecar injection attempt."""
        pass
