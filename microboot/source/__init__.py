from .git import GitSourceFetcher, SourceError, resolve_config_dir

__all__ = ["GitSourceFetcher", "SourceError", "resolve_config_dir"]
