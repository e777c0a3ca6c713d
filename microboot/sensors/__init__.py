"""Operator sensor framework.

Lifecycle events are reported to sensors through hooks, so monitoring never
leaks into reconciliation code.

- OperatorSensor: Base class defining the hooks
- SensorDelegate: Fan-out to several sensor backends
- PrometheusMonitor: Prometheus metrics exporter

Usage:
    delegate = SensorDelegate()
    delegate.add(PrometheusMonitor())
"""

from microboot.sensors.base import OperatorSensor
from microboot.sensors.delegate import SensorDelegate
from microboot.sensors.prometheus import PrometheusMonitor
from microboot.sensors.server import init_metrics_server

__all__ = [
    'OperatorSensor',
    'SensorDelegate',
    'PrometheusMonitor',
    'init_metrics_server',
]
