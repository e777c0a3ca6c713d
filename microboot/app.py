import kopf
import logging
import microboot.handlers.appconfig as appconfig
import microboot.handlers.pods as pods
import microboot.handlers.health as health
from microboot.controller import AppConfigReconciler
from microboot.resources.base import BaseResource
from microboot.resources.sidecar import SidecarInjector, injection_registry
from microboot.sensors import init_metrics_server, SensorDelegate, PrometheusMonitor
from microboot.types.settings import Settings
from kubernetes_asyncio import config
from kubernetes_asyncio.client.api_client import ApiClient


@kopf.on.startup()
async def setup(
    settings: kopf.OperatorSettings, memo: kopf.Memo, logger: logging.Logger, **kwargs
):
    # In-cluster config first (production), then local kubeconfig (development)
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        logger.info("In-cluster config not found, trying local kubeconfig")
        try:
            await config.load_kube_config()
            logger.info("Loaded local Kubernetes configuration")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    memo.conf = Settings()
    BaseResource.conf = memo.conf

    # One ApiClient for all resources to prevent connection leaks
    BaseResource.shared_api_client = ApiClient()
    logger.info("Shared Kubernetes API client initialized")

    sensor_delegate = SensorDelegate()
    sensor_delegate.add(PrometheusMonitor())
    memo.sensor = sensor_delegate
    BaseResource.sensor = sensor_delegate
    logger.info("Sensor infrastructure initialized with PrometheusMonitor")

    try:
        init_metrics_server()
    except Exception as e:
        # Operator keeps running without metrics
        logger.error(f"Failed to start metrics server: {e}")
        logger.warning("Continuing without metrics server")

    memo.reconciler = AppConfigReconciler(registry=injection_registry)

    memo.injector = SidecarInjector(injection_registry)
    if not memo.conf.sidecar_injection_enabled:
        logger.warning("Sidecar injection is disabled by configuration")

    # Post only WARNING and above as Kubernetes events
    settings.posting.enabled = True
    settings.posting.level = logging.WARNING


@kopf.on.cleanup()
async def cleanup(memo: kopf.Memo, logger: logging.Logger, **kwargs):
    """Cleanup handler for operator shutdown."""
    logger.info("Shutting down operator...")

    appconfig.requeue_deadlines.clear()

    if BaseResource.shared_api_client is not None:
        await BaseResource.shared_api_client.close()
        BaseResource.shared_api_client = None
        logger.info("Shared API client closed")

    logger.info("Operator shutdown complete")


__all__ = [
    "appconfig",
    "pods",
    "health",
]
