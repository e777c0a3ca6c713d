from kubernetes_asyncio.client import (
    V1ObjectMeta,
    V1PolicyRule,
    V1Role,
    V1RoleBinding,
    V1RoleRef,
    V1ServiceAccount,
)
from microboot.common.models.resource_ref import ResourceKind
from microboot.resources.appconfig import AppConfig
from microboot.resources.base import BaseResource

RBAC_API_GROUP = "rbac.authorization.k8s.io"

#: Applications may read their own configuration
CONFIG_READER_RULE = V1PolicyRule(
    api_groups=[""],
    resources=["configmaps"],
    verbs=["get", "list", "watch"],
)


def service_account_name(app: AppConfig) -> str:
    return app.spec_model.rbac.service_account_name or app.app_name


def bound_role_name(binding_name: str) -> str:
    """Role bound by a binding: the binding name without its `Binding` suffix."""
    for suffix in ("-binding", "Binding"):
        if binding_name.endswith(suffix) and len(binding_name) > len(suffix):
            return binding_name[: -len(suffix)]
    return binding_name


class RBACSynchronizer(BaseResource):
    """ServiceAccount, Roles and RoleBindings of an application."""

    def metadata(self, app: AppConfig, name: str) -> V1ObjectMeta:
        return V1ObjectMeta(
            name=name,
            namespace=app.namespace,
            labels=self.default_labels(app.app_name).as_dict(),
            owner_references=[app.owner_reference()],
        )

    def prepare_service_account(self, app: AppConfig) -> V1ServiceAccount:
        return V1ServiceAccount(
            api_version="v1",
            kind="ServiceAccount",
            metadata=self.metadata(app, service_account_name(app)),
        )

    def prepare_role(self, app: AppConfig, name: str) -> V1Role:
        return V1Role(
            api_version=f"{RBAC_API_GROUP}/v1",
            kind="Role",
            metadata=self.metadata(app, name),
            rules=[CONFIG_READER_RULE],
        )

    def prepare_role_binding(self, app: AppConfig, name: str) -> V1RoleBinding:
        return V1RoleBinding(
            api_version=f"{RBAC_API_GROUP}/v1",
            kind="RoleBinding",
            metadata=self.metadata(app, name),
            role_ref=V1RoleRef(
                api_group=RBAC_API_GROUP, kind="Role", name=bound_role_name(name)
            ),
            subjects=[
                {
                    "kind": "ServiceAccount",
                    "name": service_account_name(app),
                    "namespace": app.namespace,
                }
            ],
        )

    async def ensure_service_account(self, app: AppConfig, sa: V1ServiceAccount) -> str:
        existing = await self.fetch_service_account(sa.metadata.name, app.namespace)
        if existing is None:
            await self.create_service_account(app.namespace, sa)
            return "create"
        return "skip" if self.is_managed(existing) else "foreign"

    async def ensure_role(self, app: AppConfig, role: V1Role) -> str:
        existing = await self.fetch_role(role.metadata.name, app.namespace)
        if existing is None:
            await self.create_role(app.namespace, role)
            return "create"
        if not self.is_managed(existing):
            return "foreign"
        await self.replace_role(role.metadata.name, app.namespace, role)
        return "replace"

    async def ensure_role_binding(self, app: AppConfig, binding: V1RoleBinding) -> str:
        name = binding.metadata.name
        existing = await self.fetch_role_binding(name, app.namespace)
        if existing is None:
            await self.create_role_binding(app.namespace, binding)
            return "create"
        if not self.is_managed(existing):
            return "foreign"
        if existing.role_ref is not None and existing.role_ref.name != binding.role_ref.name:
            # roleRef is immutable
            await self.delete_role_binding(name, app.namespace)
            await self.create_role_binding(app.namespace, binding)
            return "recreate"
        await self.replace_role_binding(name, app.namespace, binding)
        return "replace"

    async def sync(self, app: AppConfig) -> None:
        rbac = app.spec_model.rbac
        await self.apply_child(
            app,
            ResourceKind.SERVICE_ACCOUNT.value,
            self.prepare_service_account(app),
            self.ensure_service_account,
        )
        for role in rbac.roles:
            await self.apply_child(
                app, ResourceKind.ROLE.value, self.prepare_role(app, role), self.ensure_role
            )
        for binding in rbac.role_bindings:
            await self.apply_child(
                app,
                ResourceKind.ROLE_BINDING.value,
                self.prepare_role_binding(app, binding),
                self.ensure_role_binding,
            )
        app.logger.info(
            f"Synced RBAC: service account {service_account_name(app)}, "
            f"{len(rbac.roles)} roles, {len(rbac.role_bindings)} role bindings"
        )
