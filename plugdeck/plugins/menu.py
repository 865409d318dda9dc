"""
Navigation menu composition and capability filtering.

Menus are at most two levels deep: a plugin's top-level ``MenuItem`` may
carry ``MenuChild`` entries, and children never carry children of their own.
Deeper nesting in a manifest is truncated and reported as a diagnostic, never
raised, so one sloppy plugin cannot take the navigation down for everyone.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Mapping

from plugdeck.observability.logging import StructuredLogger, menu_logger
from plugdeck.observability.metrics import runtime_metrics

from .errors import InvalidMenuItem, ManifestMalformed, MenuDepthExceeded, PluginRuntimeError
from .loader import ManifestLoader
from .manifest import Manifest

WILDCARD_SCOPE = "*"
LEGACY_MOUNT_ROOT = "/dashboard/plugins"


@dataclass(frozen=True)
class MenuChild:
    label: str
    path: str
    plugin_key: str
    plugin_name: str
    icon: str | None = None
    capabilities: tuple[str, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "label": self.label,
            "path": self.path,
            "pluginKey": self.plugin_key,
            "pluginName": self.plugin_name,
        }
        if self.icon is not None:
            data["icon"] = self.icon
        if self.capabilities is not None:
            data["capabilities"] = list(self.capabilities)
        return data


@dataclass(frozen=True)
class MenuItem(MenuChild):
    children: tuple[MenuChild, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.children is not None:
            data["children"] = [child.to_dict() for child in self.children]
        return data


@dataclass
class MenuComposition:
    items: list[MenuItem] = field(default_factory=list)
    diagnostics: list[PluginRuntimeError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "menus": [item.to_dict() for item in self.items],
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


def parse_capabilities(header: str | None) -> frozenset[str]:
    """Parse a comma separated scope list such as an ``X-Scopes`` header."""
    if not header:
        return frozenset()
    return frozenset(s.strip() for s in header.split(",") if s.strip())


def normalize_menu_path(path: str, plugin_key: str, mount_root: str = "/plugins") -> str:
    root = mount_root.rstrip("/")
    if path.startswith(f"{root}/") or path.startswith(f"{LEGACY_MOUNT_ROOT}/"):
        return path
    return f"{root}/{plugin_key}/{path.lstrip('/')}"


def _raw_path(raw: Mapping[str, Any]) -> str:
    return str(raw.get("path") or raw.get("to") or "")


def _capabilities(raw: Mapping[str, Any]) -> tuple[str, ...] | None:
    caps = raw.get("capabilities")
    if isinstance(caps, (list, tuple)):
        return tuple(str(c) for c in caps)
    return None


def _check_data_conflict(plugin_key: str, manifest: Manifest) -> None:
    for raw in manifest.menus:
        entries = [raw] + [c for c in (raw.get("children") or []) if isinstance(c, Mapping)]
        for entry in entries:
            if _raw_path(entry).strip("/") == "data":
                raise ManifestMalformed(
                    f"Plugin {plugin_key} declares data: true and a menu item with path /data",
                    plugin_key=plugin_key,
                )


def _build_child(raw: Mapping[str, Any], plugin_key: str, plugin_name: str, parent: str,
                 mount_root: str, diagnostics: list[PluginRuntimeError]) -> MenuChild | None:
    path = _raw_path(raw)
    label = raw.get("label")
    if not path or not label:
        diagnostics.append(InvalidMenuItem(plugin_key, "missing path or label", parent=parent))
        return None
    path = normalize_menu_path(path, plugin_key, mount_root)

    grandchildren = raw.get("children")
    if grandchildren is not None:
        dropped = len(grandchildren) if isinstance(grandchildren, (list, tuple)) else 0
        diagnostics.append(MenuDepthExceeded(plugin_key, path, dropped))

    return MenuChild(
        label=str(label),
        path=path,
        plugin_key=plugin_key,
        plugin_name=plugin_name,
        icon=str(raw["icon"]) if raw.get("icon") else None,
        capabilities=_capabilities(raw),
    )


def _build_item(raw: Mapping[str, Any], plugin_key: str, plugin_name: str,
                mount_root: str, diagnostics: list[PluginRuntimeError]) -> MenuItem | None:
    path = _raw_path(raw)
    label = raw.get("label")
    if not path or not label:
        diagnostics.append(InvalidMenuItem(plugin_key, "missing path or label"))
        return None
    path = normalize_menu_path(path, plugin_key, mount_root)

    children = []
    raw_children = raw.get("children")
    if isinstance(raw_children, (list, tuple)):
        for raw_child in raw_children:
            if not isinstance(raw_child, Mapping):
                diagnostics.append(InvalidMenuItem(plugin_key, "child entry is not an object", parent=path))
                continue
            child = _build_child(raw_child, plugin_key, plugin_name, path, mount_root, diagnostics)
            if child is not None:
                children.append(child)
    elif raw_children is not None:
        diagnostics.append(InvalidMenuItem(plugin_key, "children is not a list", parent=path))

    return MenuItem(
        label=str(label),
        path=path,
        plugin_key=plugin_key,
        plugin_name=plugin_name,
        icon=str(raw["icon"]) if raw.get("icon") else None,
        capabilities=_capabilities(raw),
        children=tuple(children) or None,
    )


def _ordered_raw_menus(manifest: Manifest):
    # overview first, settings last, by menu key
    overview = [m for m in manifest.menus if m.get("key") == "overview"][:1]
    settings = [m for m in manifest.menus if m.get("key") == "settings"][:1]
    rest = [m for m in manifest.menus if not any(m is s for s in overview + settings)]
    return overview, rest, settings


def build_plugin_menus(plugin_key: str, manifest: Manifest, mount_root: str = "/plugins",
                       generated_items: bool = False) -> tuple[list[MenuItem], list[PluginRuntimeError]]:
    """Build one plugin's menu tree.

    Returns the items and the non-fatal diagnostics produced along the way.
    With ``generated_items`` the overview entry is moved first and the
    settings entry last, and the runtime-provided "Collected Data" and
    "Activity Logs" pages are added.
    """
    diagnostics: list[PluginRuntimeError] = []
    root = mount_root.rstrip("/")

    def build(raws: Iterable[Mapping[str, Any]]) -> list[MenuItem]:
        built = []
        for raw in raws:
            if not isinstance(raw, Mapping):
                diagnostics.append(InvalidMenuItem(plugin_key, "menu entry is not an object"))
                continue
            item = _build_item(raw, plugin_key, manifest.name, mount_root, diagnostics)
            if item is not None:
                built.append(item)
        return built

    if not generated_items:
        return build(manifest.menus), diagnostics

    if manifest.data:
        _check_data_conflict(plugin_key, manifest)

    overview, rest, settings = _ordered_raw_menus(manifest)
    items = build(overview)
    if manifest.data:
        items.append(MenuItem(label="Collected Data", path=f"{root}/{plugin_key}/data",
                              plugin_key=plugin_key, plugin_name=manifest.name, icon="mdi:database"))
    items.extend(build(rest))
    items.extend(build(settings))
    items.append(MenuItem(label="Activity Logs", path=f"{root}/{plugin_key}/runs",
                          plugin_key=plugin_key, plugin_name=manifest.name,
                          icon="mdi:file-document-outline"))
    return items, diagnostics


def _visible(node: MenuChild, capabilities: frozenset[str]) -> bool:
    if not node.capabilities:
        return True
    if WILDCARD_SCOPE in capabilities:
        return True
    return any(cap in capabilities for cap in node.capabilities)


def filter_menus(items: Iterable[MenuItem], capabilities: Iterable[str]) -> list[MenuItem]:
    """Drop every node the caller cannot see; each level is filtered on its own."""
    caps = frozenset(capabilities)
    visible = []
    for item in items:
        if not _visible(item, caps):
            continue
        children = tuple(c for c in (item.children or ()) if _visible(c, caps))
        visible.append(replace(item, children=children or None))
    return visible


class MenuComposer:
    """Composes the navigation contributed by a set of plugins."""

    def __init__(self, loader: ManifestLoader, *, mount_root: str = "/plugins",
                 generated_items: bool = False, logger: StructuredLogger = menu_logger) -> None:
        self.loader = loader
        self.mount_root = mount_root
        self.generated_items = generated_items
        self.logger = logger

    def _report(self, plugin_key: str, diagnostic: PluginRuntimeError) -> None:
        self.logger.menu_diagnostic(plugin_key, diagnostic)
        runtime_metrics.record_menu_diagnostic(plugin_key, diagnostic.__class__.__name__)

    async def compose(self, plugin_keys: Iterable[str]) -> MenuComposition:
        composition = MenuComposition()
        for outcome in await self.loader.load_many(plugin_keys):
            if not outcome.ok:
                composition.diagnostics.append(outcome.error)
                runtime_metrics.record_menu_diagnostic(outcome.plugin_key, outcome.error.__class__.__name__)
                continue
            try:
                items, diagnostics = build_plugin_menus(
                    outcome.plugin_key, outcome.manifest, self.mount_root, self.generated_items
                )
            except ManifestMalformed as e:
                self._report(outcome.plugin_key, e)
                composition.diagnostics.append(e)
                continue
            for diagnostic in diagnostics:
                self._report(outcome.plugin_key, diagnostic)
            composition.items.extend(items)
            composition.diagnostics.extend(diagnostics)
        return composition

    async def compose_and_filter(self, plugin_keys: Iterable[str],
                                 capabilities: Iterable[str]) -> MenuComposition:
        composition = await self.compose(plugin_keys)
        composition.items = filter_menus(composition.items, capabilities)
        return composition
