"""Configuration loading for Bunki.

Site configuration lives in ``bunki.yaml`` at the project root. Values from
the file are merged over DEFAULT_CONFIG; a missing default file simply means
the defaults apply.

Key items:
- DEFAULT_CONFIG: Default configuration values.
- load_config: Read and merge the YAML configuration.
- SiteConfig: Typed view of the merged configuration with resolved paths.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError, ConfigMissing
from .fingerprints import DEFAULT_CACHE_FILE

CONFIG_FILENAME = "bunki.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "title": "My Blog",
    "description": "A blog built with Bunki",
    "base_url": "https://example.com",
    "content_dir": "content",
    "templates_dir": "templates",
    "output_dir": "dist",
    "styles": ["assets/css/main.css"],
    "cache_file": DEFAULT_CACHE_FILE,
    "page_size": 10,
    "verify_hashes": False,
    "hash_workers": min(4, os.cpu_count() or 1),
}


def load_config(project_root: Path, config_path: Path | None = None) -> dict[str, Any]:
    """Load site configuration.

    Args:
        project_root: Root directory of the project.
        config_path: Explicit config file. When given it must exist.

    Returns:
        Dictionary containing configuration values, with defaults applied.

    Raises:
        ConfigMissing: If ``config_path`` was given but does not exist.
        ConfigError: If the file is not valid YAML or not a mapping.
    """
    if config_path is not None and not config_path.exists():
        raise ConfigMissing(config_path)
    path = config_path or project_root / CONFIG_FILENAME
    config = DEFAULT_CONFIG.copy()
    if not path.exists():
        return config
    with open(path, encoding="utf-8") as f:
        try:
            loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"{path}: invalid YAML: {exc}") from exc
    if not isinstance(loaded, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")
    config.update(loaded)
    return config


@dataclass
class SiteConfig:
    """Merged configuration with paths resolved against the project root.

    Attributes:
        project_root: Root directory of the project.
        config_file: Config file that was read, or the default location.
        values: Raw merged configuration values.
    """

    project_root: Path
    config_file: Path
    values: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, project_root: Path, config_path: Path | None = None) -> SiteConfig:
        values = load_config(project_root, config_path)
        return cls(
            project_root=project_root,
            config_file=config_path or project_root / CONFIG_FILENAME,
            values=values,
        )

    def _path(self, key: str) -> Path:
        return self.project_root / str(self.values.get(key) or DEFAULT_CONFIG[key])

    @property
    def content_dir(self) -> Path:
        return self._path("content_dir")

    @property
    def templates_dir(self) -> Path:
        return self._path("templates_dir")

    @property
    def output_dir(self) -> Path:
        return self._path("output_dir")

    @property
    def cache_file(self) -> Path:
        return self._path("cache_file")

    @property
    def style_paths(self) -> list[Path]:
        styles = self.values.get("styles") or []
        if isinstance(styles, str):
            styles = [styles]
        return [self.project_root / str(style) for style in styles]

    @property
    def page_size(self) -> int:
        return max(int(self.values.get("page_size") or DEFAULT_CONFIG["page_size"]), 1)

    @property
    def verify_hashes(self) -> bool:
        return bool(self.values.get("verify_hashes", False))

    @property
    def hash_workers(self) -> int:
        return max(int(self.values.get("hash_workers") or 0), 0)

    @property
    def site(self) -> dict[str, Any]:
        """Values exposed to templates as ``site``."""
        return {
            "title": self.values.get("title", ""),
            "description": self.values.get("description", ""),
            "base_url": str(self.values.get("base_url", "")).rstrip("/"),
        }
