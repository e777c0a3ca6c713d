from .appconfig_spec import (
    AppConfigSpecSchema,
    RBACSpecSchema,
    NetworkPolicySpecSchema,
    SecretRotationSpecSchema,
    SidecarInjectionSpecSchema,
)
from .appconfig_status import AppConfigStatusSchema
