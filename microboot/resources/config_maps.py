import base64
from pathlib import Path
from typing import Dict, Iterator, Optional
from kubernetes_asyncio.client import V1ConfigMap, V1ObjectMeta
from microboot.common.models.resource_ref import ResourceKind
from microboot.resources.appconfig import AppConfig
from microboot.resources.base import BaseResource
from microboot.source import GitSourceFetcher

KIND = ResourceKind.CONFIG_MAP.value


def config_map_name(app_name: str, file_name: str) -> str:
    return f"{app_name}-{file_name.replace('.', '-')}"


def iter_config_files(root: Path) -> Iterator[Path]:
    """Regular files directly inside `root`, sorted by name."""
    for path in sorted(root.iterdir()):
        if path.is_file():
            yield path


class ConfigMapSynchronizer(BaseResource):
    """One ConfigMap per file of the configured source directory."""

    fetcher: GitSourceFetcher

    def __init__(self, fetcher: Optional[GitSourceFetcher] = None):
        self.fetcher = fetcher or GitSourceFetcher()

    def prepare_config_map(self, app: AppConfig, path: Path) -> V1ConfigMap:
        name = config_map_name(app.app_name, path.name)
        raw = path.read_bytes()
        try:
            data, binary_data = {path.name: raw.decode("utf-8")}, None
        except UnicodeDecodeError:
            data, binary_data = None, {path.name: base64.b64encode(raw).decode("ascii")}
        annotations = self.prepare_hash_annotation(
            self.compute_hash({"data": data or {}, "binaryData": binary_data or {}})
        )
        return V1ConfigMap(
            api_version="v1",
            kind="ConfigMap",
            metadata=V1ObjectMeta(
                name=name,
                namespace=app.namespace,
                labels=self.default_labels(app.app_name).as_dict(),
                annotations=annotations,
                owner_references=[app.owner_reference()],
            ),
            data=data,
            binary_data=binary_data,
        )

    async def ensure_config_map(self, app: AppConfig, config_map: V1ConfigMap) -> str:
        """Create or update `config_map`. Returns the operation performed."""
        name = config_map.metadata.name
        existing = await self.fetch_config_map(name, app.namespace)
        if existing is None:
            await self.create_config_map(app.namespace, config_map)
            return "create"
        if not self.is_managed(existing):
            return "foreign"
        if self.stored_hash(existing) == self.stored_hash(config_map):
            return "skip"
        config_map.metadata.resource_version = existing.metadata.resource_version
        await self.replace_config_map(name, app.namespace, config_map)
        return "replace"

    async def sync_file(self, app: AppConfig, path: Path) -> str:
        config_map = self.prepare_config_map(app, path)
        return await self.apply_child(
            app, KIND, config_map, self.ensure_config_map, retry=False
        )

    async def sync(self, app: AppConfig) -> int:
        """Sync configuration files of `app`. Returns the number of ConfigMaps synced."""
        spec = app.spec_model
        if not spec.repo_url:
            app.logger.info("No source repository configured, skipping ConfigMap sync")
            return 0
        async with self.fetcher.fetch(spec.repo_url, spec.ref, spec.config_path) as config_dir:
            if not config_dir.is_dir():
                app.logger.warning(
                    f"Config path '{spec.config_path}' not found in {spec.repo_url}"
                )
                return 0
            count = 0
            seen: Dict[str, Path] = {}
            for path in iter_config_files(config_dir):
                name = config_map_name(app.app_name, path.name)
                if name in seen:
                    app.logger.warning(
                        f"Skipping {path.name}: ConfigMap {name} is already "
                        f"generated from {seen[name].name}"
                    )
                    continue
                seen[name] = path
                await self.sync_file(app, path)
                count += 1
        app.logger.info(f"Synced {count} ConfigMaps from {spec.repo_url}")
        return count
