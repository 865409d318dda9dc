"""
Typed view of a plugin manifest.

``parse_manifest`` checks the raw document against ``MANIFEST_SCHEMA`` and
decodes it into frozen dataclasses. Settings fields are decoded into a closed
set of ``ConfigField`` subclasses, one per field type, so the validator and
the sanitizer never have to interpret a raw ``type`` string.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping

from jsonschema import Draft202012Validator
from jsonschema.exceptions import best_match

from .errors import ManifestMalformed
from .schema import MANIFEST_SCHEMA

_validator = Draft202012Validator(MANIFEST_SCHEMA)


@dataclass(frozen=True)
class SelectOption:
    value: Any
    label: str


@dataclass(frozen=True)
class ConfigField:
    """Common attributes of every settings field."""

    key: str
    label: str
    required: bool = False
    default: Any = None
    help: str | None = None

    type_name: ClassVar[str] = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"key": self.key, "type": self.type_name, "label": self.label}
        if self.required:
            data["required"] = True
        if self.default is not None:
            data["default"] = self.default
        if self.help:
            data["help"] = self.help
        return data


@dataclass(frozen=True)
class StringField(ConfigField):
    min_length: int | None = None
    max_length: int | None = None
    regex: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        for name, value in (("minLength", self.min_length), ("maxLength", self.max_length),
                            ("regex", self.regex)):
            if value is not None:
                data[name] = value
        return data


class TextField(StringField):
    type_name = "text"


class TextareaField(StringField):
    type_name = "textarea"


class SecretField(StringField):
    type_name = "secret"


class UrlField(StringField):
    type_name = "url"


class EmailField(StringField):
    type_name = "email"


@dataclass(frozen=True)
class NumberField(ConfigField):
    minimum: float | None = None
    maximum: float | None = None

    type_name: ClassVar[str] = "number"

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.minimum is not None:
            data["min"] = self.minimum
        if self.maximum is not None:
            data["max"] = self.maximum
        return data


class BooleanField(ConfigField):
    type_name = "boolean"


@dataclass(frozen=True)
class SelectField(ConfigField):
    options: tuple[SelectOption, ...] = ()

    type_name: ClassVar[str] = "select"

    def option_values(self) -> list[str]:
        return [str(option.value) for option in self.options]

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["options"] = [{"value": o.value, "label": o.label} for o in self.options]
        return data


class MultiSelectField(SelectField):
    type_name = "multiselect"


FIELD_TYPES: dict[str, type[ConfigField]] = {
    "text": TextField,
    "string": TextField,
    "textarea": TextareaField,
    "secret": SecretField,
    "url": UrlField,
    "email": EmailField,
    "number": NumberField,
    "boolean": BooleanField,
    "select": SelectField,
    "multiselect": MultiSelectField,
}


@dataclass(frozen=True)
class Compatibility:
    min: str | None = None
    max: str | None = None


@dataclass(frozen=True)
class Capabilities:
    scopes: tuple[str, ...] = ()
    network: tuple[str, ...] = ()
    secrets: tuple[str, ...] = ()


@dataclass(frozen=True)
class Route:
    method: str
    path: str
    auth: str = "plugin"
    timeout_sec: float | None = None
    idempotent: bool = False
    description: str | None = None


@dataclass(frozen=True)
class Widget:
    key: str
    type: str | None = None
    title: str | None = None
    version: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class RetryPolicy:
    max: int = 0
    backoff_sec: tuple[float, ...] = ()

    @property
    def effective_retries(self) -> int:
        """Retries actually attempted; the backoff array length is authoritative."""
        return min(self.max, len(self.backoff_sec))

    def delay_before(self, retry: int) -> float:
        """Seconds to wait before retry number ``retry`` (1-based)."""
        return float(self.backoff_sec[retry - 1])


@dataclass(frozen=True)
class CursorSpec:
    key: str
    ttl_sec: int


@dataclass(frozen=True)
class JobDeclaration:
    name: str
    route: str
    cron: str
    timeout_sec: float = 60.0
    concurrency: int = 1
    retry: RetryPolicy | None = None
    cursor: CursorSpec | None = None
    description: str | None = None


@dataclass(frozen=True)
class RateLimits:
    per_minute: int | None = None
    burst: int | None = None


@dataclass(frozen=True)
class Manifest:
    id: str
    name: str
    version: str
    description: str | None = None
    vendor: str | None = None
    homepage: str | None = None
    license: str | None = None
    compatibility: Compatibility = field(default_factory=Compatibility)
    capabilities: Capabilities = field(default_factory=Capabilities)
    settings_schema: tuple[ConfigField, ...] = ()
    menus: tuple[Mapping[str, Any], ...] = ()
    widgets: tuple[Widget, ...] = ()
    routes: tuple[Route, ...] = ()
    jobs: tuple[JobDeclaration, ...] = ()
    rate_limits: RateLimits | None = None
    i18n_supported: tuple[str, ...] = ()
    data: bool = False

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "vendor": self.vendor,
            "settings": [f.to_dict() for f in self.settings_schema],
            "routes": [{"method": r.method, "path": r.path, "auth": r.auth} for r in self.routes],
            "jobs": [{"name": j.name, "route": j.route, "cron": j.cron,
                      "concurrency": j.concurrency} for j in self.jobs],
            "menus": len(self.menus),
            "widgets": [w.key for w in self.widgets],
            "scopes": list(self.capabilities.scopes),
            "data": self.data,
        }


def _decode_options(raw: list[Any]) -> tuple[SelectOption, ...]:
    options = []
    for item in raw:
        if isinstance(item, Mapping):
            value = item.get("value")
            options.append(SelectOption(value=value, label=str(item.get("label", value))))
        else:
            options.append(SelectOption(value=item, label=str(item)))
    return tuple(options)


def decode_field(raw: Mapping[str, Any], *, plugin_key: str | None = None) -> ConfigField:
    """Decode one ``settingsSchema`` entry into its ConfigField class."""
    type_name = raw["type"]
    cls = FIELD_TYPES.get(type_name)
    if cls is None:
        raise ManifestMalformed(
            f"settingsSchema field {raw['key']!r} has unknown type {type_name!r}",
            plugin_key=plugin_key,
        )

    rules = raw.get("validation") or {}
    common = dict(
        key=raw["key"],
        label=raw.get("label") or raw["key"],
        required=bool(raw.get("required", False)),
        default=raw.get("default"),
        help=raw.get("help"),
    )

    def constraint(name: str, nested: str | None = None) -> Any:
        value = raw.get(name)
        return value if value is not None else rules.get(nested or name)

    if issubclass(cls, StringField):
        return cls(
            **common,
            min_length=constraint("minLength"),
            max_length=constraint("maxLength"),
            regex=constraint("regex", "pattern"),
        )
    if cls is NumberField:
        return cls(**common, minimum=constraint("min"), maximum=constraint("max"))
    if issubclass(cls, SelectField):
        return cls(**common, options=_decode_options(raw.get("options") or []))
    return cls(**common)


def _decode_job(raw: Mapping[str, Any]) -> JobDeclaration:
    retry = None
    if raw.get("retry") is not None:
        retry = RetryPolicy(
            max=int(raw["retry"].get("max", 0)),
            backoff_sec=tuple(raw["retry"].get("backoffSec") or ()),
        )
    cursor = None
    if raw.get("cursor") is not None:
        cursor = CursorSpec(key=raw["cursor"]["key"], ttl_sec=int(raw["cursor"]["ttlSec"]))
    return JobDeclaration(
        name=raw["name"],
        route=raw["route"],
        cron=raw["cron"],
        timeout_sec=float(raw.get("timeoutSec", 60)),
        concurrency=int(raw.get("concurrency", 1)),
        retry=retry,
        cursor=cursor,
        description=raw.get("description"),
    )


def parse_manifest(document: Any, *, plugin_key: str | None = None) -> Manifest:
    """Validate a decoded ``plugin.json`` document and build a Manifest."""
    first = best_match(_validator.iter_errors(document))
    if first is not None:
        where = "/".join(str(p) for p in first.absolute_path) or "<root>"
        raise ManifestMalformed(f"{where}: {first.message}", plugin_key=plugin_key)

    fields: list[ConfigField] = []
    seen: set[str] = set()
    for raw in document.get("settingsSchema", []):
        if raw["key"] in seen:
            raise ManifestMalformed(f"duplicate settingsSchema key {raw['key']!r}", plugin_key=plugin_key)
        seen.add(raw["key"])
        fields.append(decode_field(raw, plugin_key=plugin_key))

    compat = document.get("compatibility") or {}
    caps = document.get("capabilities") or {}
    limits = document.get("rateLimits")

    return Manifest(
        id=document["id"],
        name=document["name"],
        version=document["version"],
        description=document.get("description"),
        vendor=document.get("vendor"),
        homepage=document.get("homepage"),
        license=document.get("license"),
        compatibility=Compatibility(min=compat.get("min"), max=compat.get("max")),
        capabilities=Capabilities(
            scopes=tuple(caps.get("scopes", ())),
            network=tuple(caps.get("network", ())),
            secrets=tuple(caps.get("secrets", ())),
        ),
        settings_schema=tuple(fields),
        menus=tuple(document.get("menus", ())),
        widgets=tuple(
            Widget(key=w.get("key", ""), type=w.get("type"), title=w.get("title"),
                   version=w.get("version"), description=w.get("description"))
            for w in document.get("widgets", ())
        ),
        routes=tuple(
            Route(method=r["method"], path=r["path"], auth=r.get("auth", "plugin"),
                  timeout_sec=r.get("timeoutSec"), idempotent=bool(r.get("idempotent", False)),
                  description=r.get("description"))
            for r in document.get("routes", ())
        ),
        jobs=tuple(_decode_job(j) for j in document.get("jobs", ())),
        rate_limits=RateLimits(limits.get("perMinute"), limits.get("burst")) if limits else None,
        i18n_supported=tuple((document.get("i18n") or {}).get("supported", ())),
        data=bool(document.get("data", False)),
    )
