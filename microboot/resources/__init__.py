from .appconfig import AppConfig
from .config_maps import ConfigMapSynchronizer
from .rbac import RBACSynchronizer
from .network_policy import NetworkPolicySynchronizer
from .secret import SecretRotator
from .sidecar import SidecarInjector, InjectionRegistry, injection_registry

__all__ = [
    "AppConfig",
    "ConfigMapSynchronizer",
    "RBACSynchronizer",
    "NetworkPolicySynchronizer",
    "SecretRotator",
    "SidecarInjector",
    "InjectionRegistry",
    "injection_registry",
]
