"""Configuration loading and management."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class SourceConfig:
    enabled: bool = True
    root: Path | None = None  # Overrides the adapter's default data directory


@dataclass
class SyncConfig:
    interval_seconds: int = 300
    state_db: Path = field(default_factory=lambda: Path.home() / "session-canon" / "state" / "sync.db")


@dataclass
class TypesenseConfig:
    host: str = "localhost"
    port: int = 8108
    protocol: str = "http"
    api_key: str = "dev-api-key"


@dataclass
class Config:
    sources: dict[str, SourceConfig] = field(default_factory=dict)
    sync: SyncConfig = field(default_factory=SyncConfig)
    typesense: TypesenseConfig = field(default_factory=TypesenseConfig)

    def source(self, name: str) -> SourceConfig:
        """Config for a source, falling back to defaults when not listed."""
        return self.sources.get(name, SourceConfig())


def expand_env_var(value: str) -> str:
    """Expand environment variables in string (e.g. ${VAR})."""
    if value.startswith("${") and value.endswith("}"):
        env_var = value[2:-1]
        return os.environ.get(env_var, value)
    return value


def expand_path(path_str: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expandvars(os.path.expanduser(path_str)))


def _parse_source_root(value: str | None) -> Path | None:
    if not value:
        return None
    value = expand_env_var(value)
    # An unset ${VAR} is left as-is by expand_env_var
    if value.startswith("${"):
        return None
    return expand_path(value)


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file."""
    if config_path is None:
        search_paths = [
            Path.cwd() / "config.yaml",
            Path.home() / ".config" / "session-canon" / "config.yaml",
            Path("/etc/session-canon/config.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = path
                break

    if config_path is None or not config_path.exists():
        return Config()

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    sources = {}
    for name, src_data in (data.get("sources") or {}).items():
        src_data = src_data or {}
        sources[name] = SourceConfig(
            enabled=src_data.get("enabled", True),
            root=_parse_source_root(src_data.get("root")),
        )

    sync_data = data.get("sync") or {}
    sync = SyncConfig(
        interval_seconds=sync_data.get("interval_seconds", 300),
        state_db=expand_path(sync_data.get("state_db", "~/session-canon/state/sync.db")),
    )

    ts_data = data.get("typesense") or {}
    typesense = TypesenseConfig(
        host=ts_data.get("host", "localhost"),
        port=ts_data.get("port", 8108),
        protocol=ts_data.get("protocol", "http"),
        api_key=expand_env_var(ts_data.get("api_key", "dev-api-key")),
    )

    return Config(sources=sources, sync=sync, typesense=typesense)
