"""Materializes configuration sources from git repositories."""

import asyncio
import logging
import shutil
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import git

logger = logging.getLogger(__name__)


class SourceError(Exception):
    """Exception raised when a source cannot be fetched."""


def resolve_config_dir(root: Path, config_path: Optional[str]) -> Path:
    """Resolve `config_path` inside `root`. Paths escaping `root` are rejected."""
    relative = (config_path or "/").strip().lstrip("/")
    resolved = (root / relative).resolve()
    root = root.resolve()
    if resolved != root and root not in resolved.parents:
        raise SourceError(f"Config path '{config_path}' escapes the repository")
    return resolved


class GitSourceFetcher:
    """Clones a repository into a temporary directory for the duration of a block."""

    def clone(self, repo_url: str, ref: Optional[str], target: Path) -> None:
        try:
            logger.info(f"Cloning repository {repo_url} to {target}")
            repo = git.Repo.clone_from(repo_url, str(target))
            if ref:
                logger.info(f"Checking out {ref}")
                try:
                    repo.git.checkout(ref)
                except git.exc.GitCommandError:
                    # Tags are not always fetched by the initial clone
                    repo.git.fetch("--tags")
                    repo.git.checkout(ref)
        except git.exc.GitCommandError as e:
            raise SourceError(f"Git operation failed: {e}") from e

    @asynccontextmanager
    async def fetch(
        self, repo_url: str, ref: Optional[str] = None, config_path: Optional[str] = None
    ) -> AsyncIterator[Path]:
        """Yield the configuration directory of a fresh checkout.

        The directory may not exist when `config_path` is absent from the
        repository. The checkout is removed when the block exits.
        """
        workdir = Path(tempfile.mkdtemp(prefix="appconfig-source-"))
        try:
            await asyncio.to_thread(self.clone, repo_url, ref, workdir)
            yield resolve_config_dir(workdir, config_path)
        finally:
            await asyncio.to_thread(shutil.rmtree, workdir, True)
