"""
Settings validation against a plugin's declared ``settingsSchema``.

Validation is exhaustive: every field is checked and every violated
constraint kind is reported, so a settings form can show all problems at
once. Patterns and options come from the schema only; user input is never
compiled or evaluated.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable, Mapping
from urllib.parse import urlparse

from .errors import SchemaProgrammerError, ValidationFailed
from .manifest import (
    BooleanField, ConfigField, EmailField, Manifest, MultiSelectField, NumberField,
    SelectField, StringField, UrlField,
)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern:
    return re.compile(pattern)


def _fmt(number: float) -> str:
    if isinstance(number, float) and number.is_integer():
        return str(int(number))
    return str(number)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    if isinstance(value, (list, tuple)) and not value:
        return True
    return False


def _fields(schema: Manifest | Iterable[ConfigField]) -> Iterable[ConfigField]:
    if isinstance(schema, Manifest):
        return schema.settings_schema
    return schema


def _check_string(f: StringField, value: Any) -> list[str]:
    if not isinstance(value, str):
        return [f"{f.label} must be a string"]
    problems = []
    try:
        if f.min_length is not None and len(value) < f.min_length:
            problems.append(f"{f.label} must be at least {f.min_length} characters")
        if f.max_length is not None and len(value) > f.max_length:
            problems.append(f"{f.label} must be at most {f.max_length} characters")
    except TypeError as e:
        raise SchemaProgrammerError(f"Invalid length bound for field {f.key}: {e}", field=f.key)
    if f.regex:
        try:
            pattern = _compile(f.regex)
        except (re.error, TypeError) as e:
            raise SchemaProgrammerError(f"Invalid regex for field {f.key}: {e}", field=f.key)
        if not pattern.search(value):
            problems.append(f"{f.label} format is invalid")
    if isinstance(f, UrlField):
        parsed = urlparse(value)
        if not (parsed.scheme and parsed.netloc):
            problems.append(f"{f.label} must be a valid URL")
    if isinstance(f, EmailField) and not EMAIL_PATTERN.match(value):
        problems.append(f"{f.label} must be a valid email address")
    return problems


def _check_number(f: NumberField, value: Any) -> list[str]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return [f"{f.label} must be a number"]
    if not math.isfinite(value):
        return [f"{f.label} must be a finite number"]
    problems = []
    try:
        if f.minimum is not None and value < f.minimum:
            problems.append(f"{f.label} must be at least {_fmt(f.minimum)}")
        if f.maximum is not None and value > f.maximum:
            problems.append(f"{f.label} must be at most {_fmt(f.maximum)}")
    except TypeError as e:
        raise SchemaProgrammerError(f"Invalid numeric bound for field {f.key}: {e}", field=f.key)
    return problems


def _require_options(f: SelectField) -> list[str]:
    if not f.options:
        raise SchemaProgrammerError(f"Field {f.key} of type {f.type_name} declares no options", field=f.key)
    return f.option_values()


def _check_select(f: SelectField, value: Any) -> list[str]:
    allowed = _require_options(f)
    if str(value) not in allowed:
        return [f"{f.label} must be one of: {', '.join(allowed)}"]
    return []


def _check_multiselect(f: MultiSelectField, value: Any) -> list[str]:
    allowed = _require_options(f)
    if not isinstance(value, (list, tuple)):
        return [f"{f.label} must be a list"]
    if any(str(item) not in allowed for item in value):
        return [f"{f.label} must only contain: {', '.join(allowed)}"]
    return []


def _check(f: ConfigField, value: Any) -> list[str]:
    if isinstance(f, StringField):
        return _check_string(f, value)
    if isinstance(f, NumberField):
        return _check_number(f, value)
    if isinstance(f, BooleanField):
        return [] if isinstance(value, bool) else [f"{f.label} must be true or false"]
    # MultiSelectField subclasses SelectField
    if isinstance(f, MultiSelectField):
        return _check_multiselect(f, value)
    if isinstance(f, SelectField):
        return _check_select(f, value)
    raise SchemaProgrammerError(f"Unsupported field class {type(f).__name__}", field=f.key)


def validate(schema: Manifest | Iterable[ConfigField], values: Mapping[str, Any]) -> list[ValidationError]:
    """Return every violation of ``schema`` in ``values``; empty means valid."""
    errors: list[ValidationError] = []
    for f in _fields(schema):
        value = values.get(f.key)

        if f.required and _is_empty(value):
            errors.append(ValidationError(f.key, f"{f.label} is required"))
            continue
        if _is_empty(value):
            continue

        errors.extend(ValidationError(f.key, message) for message in _check(f, value))
    return errors


def ensure_valid(schema: Manifest | Iterable[ConfigField], values: Mapping[str, Any],
                 *, plugin_key: str | None = None) -> None:
    errors = validate(schema, values)
    if errors:
        raise ValidationFailed(errors, plugin_key=plugin_key)


def apply_defaults(schema: Manifest | Iterable[ConfigField], values: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of ``values`` with declared defaults filled in for absent fields."""
    merged = dict(values)
    for f in _fields(schema):
        if f.default is not None and merged.get(f.key) is None:
            merged[f.key] = f.default
    return merged
