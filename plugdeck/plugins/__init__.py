from .errors import (
    ManifestLoadTimeout,
    ManifestMalformed,
    ManifestNotFound,
    PluginRuntimeError,
    SchemaProgrammerError,
    ValidationFailed,
)
from .loader import LoadOutcome, ManifestLoader
from .manifest import ConfigField, Manifest, parse_manifest
from .menu import MenuComposer, MenuItem, build_plugin_menus, filter_menus
from .validator import ValidationError, apply_defaults, ensure_valid, validate

__all__ = [
    "ConfigField",
    "LoadOutcome",
    "Manifest",
    "ManifestLoadTimeout",
    "ManifestLoader",
    "ManifestMalformed",
    "ManifestNotFound",
    "MenuComposer",
    "MenuItem",
    "PluginRuntimeError",
    "SchemaProgrammerError",
    "ValidationError",
    "ValidationFailed",
    "apply_defaults",
    "build_plugin_menus",
    "ensure_valid",
    "filter_menus",
    "parse_manifest",
    "validate",
]
