"""
Runtime settings shared by the API, the CLI and the worker.

Values come from environment variables; ``from_dict`` exists for tests and
embedding hosts that assemble settings themselves.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _split_list(value: Optional[str]) -> tuple:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass
class RuntimeSettings:
    """Where plugins live and how their contributions are exposed."""

    plugins_dir: str = "plugins"
    mount_root: str = "/plugins"
    enabled_plugins: tuple = field(default_factory=tuple)  # empty: every discovered plugin
    manifest_timeout: float = 5.0
    menu_generated_items: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_environment(cls) -> "RuntimeSettings":
        """Create settings from environment variables."""
        return cls(
            plugins_dir=os.environ.get("PLUGDECK_PLUGINS_DIR", "plugins"),
            mount_root=os.environ.get("PLUGDECK_MOUNT_ROOT", "/plugins"),
            enabled_plugins=_split_list(os.environ.get("PLUGDECK_ENABLED_PLUGINS")),
            manifest_timeout=float(os.environ.get("PLUGDECK_MANIFEST_TIMEOUT", "5")),
            menu_generated_items=_env_bool("PLUGDECK_MENU_GENERATED_ITEMS"),
            log_level=os.environ.get("PLUGDECK_LOG_LEVEL", "INFO"),
        )

    @classmethod
    def from_dict(cls, config_dict: dict) -> "RuntimeSettings":
        """Create settings from dictionary."""
        enabled = config_dict.get("enabled_plugins", ())
        if isinstance(enabled, str):
            enabled = _split_list(enabled)
        return cls(
            plugins_dir=config_dict.get("plugins_dir", "plugins"),
            mount_root=config_dict.get("mount_root", "/plugins"),
            enabled_plugins=tuple(enabled),
            manifest_timeout=float(config_dict.get("manifest_timeout", 5.0)),
            menu_generated_items=bool(config_dict.get("menu_generated_items", False)),
            log_level=config_dict.get("log_level", "INFO"),
        )

    def make_loader(self):
        from plugdeck.plugins.loader import ManifestLoader
        return ManifestLoader(self.plugins_dir, load_timeout=self.manifest_timeout)

    def plugin_keys(self, loader=None) -> list:
        """Enabled plugin keys, falling back to every plugin on disk."""
        if self.enabled_plugins:
            return list(self.enabled_plugins)
        return (loader or self.make_loader()).discover()
