from enum import Enum
from typing import NamedTuple, Optional


class ResourceKind(Enum):
    """Kinds of child resources the operator creates."""

    CONFIG_MAP = "ConfigMap"
    SECRET = "Secret"
    SERVICE_ACCOUNT = "ServiceAccount"
    ROLE = "Role"
    ROLE_BINDING = "RoleBinding"
    NETWORK_POLICY = "NetworkPolicy"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, kind: str) -> "ResourceKind":
        """Case-insensitive lookup. Unrecognized kinds map to UNKNOWN."""
        lowered = (kind or "").lower()
        for member in cls:
            if member is not cls.UNKNOWN and member.value.lower() == lowered:
                return member
        return cls.UNKNOWN


class ResourceRef(NamedTuple):
    """Reference to a child resource, rendered as `Kind:namespace/name`."""

    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind}:{self.namespace}/{self.name}"

    @property
    def resource_kind(self) -> ResourceKind:
        return ResourceKind.parse(self.kind)

    @classmethod
    def parse(cls, ref: str) -> Optional["ResourceRef"]:
        """Parse `Kind:namespace/name`; returns None when malformed."""
        if not isinstance(ref, str):
            return None
        kind, sep, location = ref.partition(":")
        if not sep:
            return None
        namespace, sep, name = location.partition("/")
        if not sep or not kind or not namespace or not name:
            return None
        return cls(kind, namespace, name)
