from typing import Dict, Optional


class ResourceLabels:
    DOMAIN: str = "microservice.example.com/"

    VERSION_LABEL = DOMAIN + "version"

    ROTATION_TIMESTAMP_ANNOTATION = DOMAIN + "rotation-timestamp"

    RESOURCE_HASH_ANNOTATION = DOMAIN + "resource-hash"


class Labels(ResourceLabels):
    APP_LABEL = "app"

    MANAGED_BY_LABEL = "managed-by"

    _labels: Dict[str, str]

    def __init__(self, labels: Optional[Dict[str, str]] = None) -> None:
        self._labels = dict(labels) if labels else dict()

    def update(self, labels: Dict[str, str]) -> "Labels":
        self._labels.update(labels.copy())
        return self

    def as_dict(self) -> Dict[str, str]:
        """Return labels as dictionary."""
        return self._labels.copy()

    def as_str(self):
        """Return labels as comma separated string."""
        return ",".join([f"{k}={v}" for k, v in self._labels.items()])

    def include(self, label: str, value: str) -> "Labels":
        return self.update({label: value})

    def include_app(self, app_name: str) -> "Labels":
        return self.include(self.APP_LABEL, app_name)

    def include_managed_by(self, operator_name: str) -> "Labels":
        return self.include(self.MANAGED_BY_LABEL, operator_name)

    def get(self, label: str, default: Optional[str] = None) -> Optional[str]:
        return self._labels.get(label, default)

    def contains(self, other: "Labels") -> bool:
        """Returns True if all labels in `other` are contained."""
        return all(
            key in self._labels and self._labels[key] == value
            for key, value in other.as_dict().items()
        )

    def is_managed_by(self, operator_name: str) -> bool:
        return self._labels.get(self.MANAGED_BY_LABEL) == operator_name

    def __len__(self) -> int:
        return len(self._labels)

    def __str__(self):
        return f"Labels<{self._labels}>"

    @classmethod
    def parse(cls, selector: str) -> "Labels":
        """Build labels from a `k=v,k2=v2` selector string."""
        labels = Labels()
        for part in (selector or "").split(","):
            if not part.strip():
                continue
            key, sep, value = part.partition("=")
            if not sep or not key.strip():
                raise ValueError(f"Invalid label selector entry: '{part}'")
            labels.include(key.strip(), value.strip())
        return labels

    @classmethod
    def generate_default_labels(cls, app_name: str, managed_by: str) -> "Labels":
        return Labels().include_app(app_name).include_managed_by(managed_by)
