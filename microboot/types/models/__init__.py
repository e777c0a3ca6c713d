from .appconfig_spec import (
    AppConfigSpec,
    RBACSpec,
    NetworkPolicySpec,
    SecretRotationSpec,
    SidecarInjectionSpec,
)
from .appconfig_status import AppConfigStatus
