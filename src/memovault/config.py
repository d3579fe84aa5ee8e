"""Configuration loading from environment variables and memovault.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_HOME_DIR = Path.home() / ".memovault"
_DEFAULT_DATA_DIR = _HOME_DIR / "data"
_CONFIG_FILENAME = "memovault.toml"

_BACKENDS = ("sqlite", "ordered")


@dataclass
class StorageConfig:
    """Which index backend to use and whether to upgrade old data on start."""

    index_backend: str = "sqlite"
    migrate_on_start: bool = True


@dataclass
class VaultConfig:
    """Top-level memovault configuration."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    data_dir: Path = _DEFAULT_DATA_DIR
    log_level: str = "INFO"


def _as_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("0", "false", "no", "off", "")
    return bool(value)


def load_config(config_path: Path | None = None) -> VaultConfig:
    """Load configuration from environment variables and optional memovault.toml.

    Priority: environment variables > memovault.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.memovault/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _HOME_DIR / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    storage_data = file_data.get("storage", {})

    backend = os.getenv("MEMOVAULT_INDEX_BACKEND", storage_data.get("index_backend", "sqlite"))
    if backend not in _BACKENDS:
        raise ValueError(f"index_backend must be one of {_BACKENDS}, got {backend!r}")

    config = VaultConfig(
        storage=StorageConfig(
            index_backend=backend,
            migrate_on_start=_as_bool(
                os.getenv("MEMOVAULT_MIGRATE", storage_data.get("migrate_on_start", True))
            ),
        ),
        data_dir=Path(
            os.getenv("MEMOVAULT_DATA_DIR", file_data.get("data_dir", str(_DEFAULT_DATA_DIR)))
        ).expanduser(),
        log_level=os.getenv("MEMOVAULT_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
