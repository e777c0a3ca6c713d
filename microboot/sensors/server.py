"""HTTP server for exposing Prometheus metrics.

The built-in prometheus_client HTTP server runs in a daemon thread so it never
blocks the operator event loop or its shutdown.
"""

import os
import logging
from threading import Thread
from prometheus_client import start_http_server

logger = logging.getLogger(__name__)

DEFAULT_METRICS_PORT = 8000


def start_metrics_server(port: int = DEFAULT_METRICS_PORT) -> None:
    """Serve http://0.0.0.0:port/metrics."""
    try:
        start_http_server(port)
        logger.info(f"Prometheus metrics server started on port {port}")
    except OSError as e:
        logger.error(f"Failed to start metrics server on port {port}: {e}")
        raise


def init_metrics_server() -> Thread:
    """Start the metrics server on METRICS_PORT in a background thread."""
    port = int(os.environ.get('METRICS_PORT', DEFAULT_METRICS_PORT))

    thread = Thread(target=start_metrics_server, args=(port,), daemon=True)
    thread.start()

    logger.info(f"Metrics server initialization complete (port: {port})")
    return thread
