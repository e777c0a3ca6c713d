"""Shared fixtures for unit tests."""

import json
import logging
import pytest
from kubernetes_asyncio.client import ApiException
from microboot.resources.appconfig import AppConfig
from microboot.resources.base import BaseResource
from microboot.sensors import SensorDelegate
from microboot.types.settings import Settings
from microboot.upgrade import CURRENT_VERSION, VERSION_LABEL


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch):
    """Settings without retry delays."""
    conf = Settings(
        retry_initial_delay_seconds=0,
        retry_max_delay_seconds=0,
        cleanup_retry_max_delay_seconds=0,
    )
    monkeypatch.setattr(BaseResource, "conf", conf)
    monkeypatch.setattr(BaseResource, "sensor", SensorDelegate())
    return conf


@pytest.fixture
def make_app():
    """Factory for AppConfig objects in namespace `shop`."""

    def _make_app(spec=None, active=True, **kwargs):
        body_spec = {"appName": "billing-api"}
        body_spec.update(spec or {})
        if active:
            kwargs.setdefault("finalizers", [AppConfig.FINALIZER])
            kwargs.setdefault("labels", {VERSION_LABEL: CURRENT_VERSION})
        kwargs.setdefault("uid", "0b6f1c2e-uid")
        kwargs.setdefault("generation", 1)
        return AppConfig(
            name="billing",
            namespace="shop",
            spec=body_spec,
            logger=logging.getLogger("test"),
            **kwargs,
        )

    return _make_app


@pytest.fixture
def api_error():
    """Factory for ApiExceptions carrying a Kubernetes status body."""

    def _api_error(status, reason=None):
        ex = ApiException(status=status, reason=reason or "Error")
        if reason:
            ex.body = json.dumps({"kind": "Status", "reason": reason, "message": reason})
        return ex

    return _api_error
