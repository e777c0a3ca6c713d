"""Prometheus monitoring backend.

PrometheusMonitor turns operator lifecycle events into Prometheus metrics:

1. Reconciliation loop health: duration, throughput, errors
2. Kubernetes resource sync: write counts, latency, cleanup results
3. Features: secret rotations, sidecar injections
"""

from typing import Dict, Optional, Any
import time
import logging

from prometheus_client import Counter, Histogram, CollectorRegistry, REGISTRY

from microboot.sensors.base import OperatorSensor

logger = logging.getLogger(__name__)


class PrometheusMonitor(OperatorSensor):
    """Prometheus metrics monitor for the AppConfig operator.

    Metric families:
    - appconfig_reconcile_* - Reconciliation loop metrics
    - appconfig_resource_* / appconfig_cleanup_* - Kubernetes resource metrics
    - appconfig_secret_rotations_total / appconfig_sidecar_injections_total
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        super().__init__()

        # =============================================================================
        # Reconciliation Loop Metrics
        # =============================================================================

        self.reconcile_duration = Histogram(
            'appconfig_reconcile_duration_seconds',
            'Time spent in reconciliation loop',
            labelnames=['app_name', 'namespace', 'trigger_source', 'result'],
            buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
            registry=registry,
        )

        self.reconcile_total = Counter(
            'appconfig_reconcile_total',
            'Total number of reconciliation attempts',
            labelnames=['app_name', 'namespace', 'trigger_source', 'result'],
            registry=registry,
        )

        self.reconcile_errors = Counter(
            'appconfig_reconcile_errors_total',
            'Total number of reconciliation errors',
            labelnames=['app_name', 'namespace', 'error_type'],
            registry=registry,
        )

        # =============================================================================
        # Kubernetes Resource Metrics
        # =============================================================================

        self.resource_sync_duration = Histogram(
            'appconfig_resource_sync_duration_seconds',
            'Time spent writing a child resource',
            labelnames=['app_name', 'namespace', 'resource_type', 'operation'],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0],
            registry=registry,
        )

        self.resource_sync_total = Counter(
            'appconfig_resource_sync_total',
            'Total number of child resource writes',
            labelnames=['app_name', 'namespace', 'resource_type', 'operation', 'result'],
            registry=registry,
        )

        self.cleanup_total = Counter(
            'appconfig_cleanup_total',
            'Total number of child resources deleted during finalization',
            labelnames=['app_name', 'namespace', 'resource_type', 'result'],
            registry=registry,
        )

        # =============================================================================
        # Feature Metrics
        # =============================================================================

        self.secret_rotations = Counter(
            'appconfig_secret_rotations_total',
            'Total number of secret rotations',
            labelnames=['app_name', 'namespace', 'strategy'],
            registry=registry,
        )

        self.sidecar_injections = Counter(
            'appconfig_sidecar_injections_total',
            'Total number of sidecar injection attempts',
            labelnames=['app_name', 'namespace', 'result'],
            registry=registry,
        )

        logger.info("PrometheusMonitor initialized with all metrics")

    @staticmethod
    def _result(success: bool) -> str:
        return 'success' if success else 'failure'

    def on_reconcile_start(
        self,
        app_name: str,
        namespace: str,
        generation: int,
        trigger_source: str,
    ) -> Optional[Dict[str, Any]]:
        return {
            'start_time': time.time(),
            'trigger_source': trigger_source,
        }

    def on_reconcile_complete(
        self,
        app_name: str,
        namespace: str,
        state: Optional[Dict[str, Any]],
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        if state:
            duration = time.time() - state['start_time']
            labels = dict(
                app_name=app_name,
                namespace=namespace,
                trigger_source=state['trigger_source'],
                result=self._result(success),
            )
            self.reconcile_duration.labels(**labels).observe(duration)
            self.reconcile_total.labels(**labels).inc()

        if error:
            self.reconcile_errors.labels(
                app_name=app_name,
                namespace=namespace,
                error_type=error.__class__.__name__,
            ).inc()

    def on_resource_sync_start(
        self,
        app_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
    ) -> Optional[Dict[str, Any]]:
        return {'start_time': time.time()}

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
        if state:
            self.resource_sync_duration.labels(
                app_name=app_name,
                namespace=namespace,
                resource_type=resource_type,
                operation=operation,
            ).observe(time.time() - state['start_time'])
        self.resource_sync_total.labels(
            app_name=app_name,
            namespace=namespace,
            resource_type=resource_type,
            operation=operation,
            result=self._result(success),
        ).inc()

    def on_resource_cleanup(
        self, app_name: str, namespace: str, resource_type: str, success: bool
    ) -> None:
        self.cleanup_total.labels(
            app_name=app_name,
            namespace=namespace,
            resource_type=resource_type,
            result=self._result(success),
        ).inc()

    def on_secret_rotated(
        self, app_name: str, namespace: str, secret_name: str, strategy: str
    ) -> None:
        self.secret_rotations.labels(
            app_name=app_name, namespace=namespace, strategy=strategy
        ).inc()

    def on_sidecar_injection(
        self, app_name: str, namespace: str, pod_name: str, success: bool
    ) -> None:
        self.sidecar_injections.labels(
            app_name=app_name, namespace=namespace, result=self._result(success)
        ).inc()
