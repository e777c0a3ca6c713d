from typing import Any, Dict, List
from kubernetes_asyncio.client import (
    V1LabelSelector,
    V1NetworkPolicy,
    V1NetworkPolicySpec,
    V1ObjectMeta,
)
from microboot.common.models.labels import Labels
from microboot.common.models.resource_ref import ResourceKind
from microboot.resources.appconfig import AppConfig
from microboot.resources.base import BaseResource

KIND = ResourceKind.NETWORK_POLICY.value
ALLOW_ALL = "*"


def network_policy_name(app_name: str) -> str:
    return f"{app_name}-network-policy"


def prepare_rule(entry: Any, peer_field: str) -> Dict[str, Any]:
    """Translate one configured rule into a NetworkPolicy rule.

    Mappings are Kubernetes rules already and pass through unchanged. A string
    `k=v[,k2=v2]` allows traffic with the pods carrying those labels, `*` allows
    everything.
    """
    if isinstance(entry, dict):
        return entry
    if isinstance(entry, str):
        if entry.strip() == ALLOW_ALL:
            return {}
        labels = Labels.parse(entry)
        if not len(labels):
            raise ValueError(f"Empty network policy peer selector: '{entry}'")
        return {peer_field: [{"podSelector": {"matchLabels": labels.as_dict()}}]}
    raise ValueError(f"Unsupported network policy rule: {entry!r}")


class NetworkPolicySynchronizer(BaseResource):
    """Isolates the application pods behind one NetworkPolicy."""

    def prepare_network_policy(self, app: AppConfig) -> V1NetworkPolicy:
        spec = app.spec_model.network_policy
        ingress: List[Dict[str, Any]] = [prepare_rule(r, "from") for r in spec.ingress]
        egress: List[Dict[str, Any]] = [prepare_rule(r, "to") for r in spec.egress]
        policy_types = ["Ingress"]
        if egress:
            policy_types.append("Egress")
        policy_spec = V1NetworkPolicySpec(
            pod_selector=V1LabelSelector(
                match_labels=Labels().include_app(app.app_name).as_dict()
            ),
            ingress=ingress,
            egress=egress or None,
            policy_types=policy_types,
        )
        policy = V1NetworkPolicy(
            api_version="networking.k8s.io/v1",
            kind="NetworkPolicy",
            metadata=V1ObjectMeta(
                name=network_policy_name(app.app_name),
                namespace=app.namespace,
                labels=self.default_labels(app.app_name).as_dict(),
                owner_references=[app.owner_reference()],
            ),
            spec=policy_spec,
        )
        policy.metadata.annotations = self.prepare_hash_annotation(
            self.compute_hash(
                {"ingress": ingress, "egress": egress, "policyTypes": policy_types}
            )
        )
        return policy

    async def ensure_network_policy(self, app: AppConfig, policy: V1NetworkPolicy) -> str:
        name = policy.metadata.name
        existing = await self.fetch_network_policy(name, app.namespace)
        if existing is None:
            await self.create_network_policy(app.namespace, policy)
            return "create"
        if not self.is_managed(existing):
            return "foreign"
        if self.stored_hash(existing) == self.stored_hash(policy):
            return "skip"
        await self.replace_network_policy(name, app.namespace, policy)
        return "replace"

    async def sync(self, app: AppConfig) -> str:
        return await self.apply_child(
            app, KIND, self.prepare_network_policy(app), self.ensure_network_policy
        )
