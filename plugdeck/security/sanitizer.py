"""
Sensitive data masking for values that cross a trust boundary.

Plugin-sourced data (configuration shown back to a user, raw event payloads,
structured log fields) is passed through ``sanitize`` before it reaches a
viewer. Structure is preserved; only leaves are replaced.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

REDACTED = "***REDACTED***"
MASK_FILL = "***"

# Case-insensitive substrings of a field name that mark its value as sensitive
SENSITIVE_KEY_TERMS = (
    "token",
    "secret",
    "password",
    "passwd",
    "key",
    "credential",
    "auth",
    "bearer",
    "private",
    "session",
    "cookie",
    "signature",
)

# Shapes of well-known credential values
CREDENTIAL_PATTERNS = (
    re.compile(r'^[A-Za-z0-9\-_]{20,}$'),                    # long opaque strings
    re.compile(r'^sk_[a-z]+_[A-Za-z0-9]{20,}$'),              # Stripe
    re.compile(r'^gh[pousr]_[A-Za-z0-9]{36,}$'),              # GitHub
    re.compile(r'^glpat-[A-Za-z0-9\-_]{20,}$'),               # GitLab
    re.compile(r'^xox[baprs]-[A-Za-z0-9-]{10,}$'),            # Slack
    re.compile(r'^AKIA[0-9A-Z]{16}$'),                        # AWS access key id
    re.compile(r'^eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*$'),  # JWT
)

_MASKED_SHAPE = re.compile(r'^.{4}\*\*\*.{4}$', re.DOTALL)


@dataclass(frozen=True)
class RedactionRule:
    """A field-name or value-shape pattern that triggers masking."""

    kind: str  # "key" or "value"
    pattern: re.Pattern

    @classmethod
    def key_term(cls, term: str) -> "RedactionRule":
        return cls("key", re.compile(re.escape(term), re.IGNORECASE))

    @classmethod
    def value_shape(cls, pattern: str) -> "RedactionRule":
        return cls("value", re.compile(pattern))

    def matches_key(self, key: str) -> bool:
        return self.kind == "key" and self.pattern.search(key) is not None

    def matches_value(self, value: str) -> bool:
        return self.kind == "value" and self.pattern.search(value) is not None


DEFAULT_RULES: tuple[RedactionRule, ...] = (
    tuple(RedactionRule.key_term(term) for term in SENSITIVE_KEY_TERMS)
    + tuple(RedactionRule("value", p) for p in CREDENTIAL_PATTERNS)
)


def is_masked(value: Any) -> bool:
    """True for values produced by ``mask_value``."""
    return isinstance(value, str) and (value == REDACTED or bool(_MASKED_SHAPE.match(value)))


def mask_value(value: Any) -> Any:
    """Mask a single leaf.

    Strings shorter than 8 characters and non-string leaves are fully
    redacted; longer strings keep their first and last 4 characters.
    """
    if is_masked(value):
        return value
    if not isinstance(value, str) or len(value) < 8:
        return REDACTED
    return f"{value[:4]}{MASK_FILL}{value[-4:]}"


class Sanitizer:
    """Recursive masker driven by a set of redaction rules."""

    def __init__(self, rules: Sequence[RedactionRule] = DEFAULT_RULES,
                 extra_keys: Iterable[str] = ()):
        self.key_rules = [r for r in rules if r.kind == "key"]
        self.value_rules = [r for r in rules if r.kind == "value"]
        self.extra_keys = {k.lower() for k in extra_keys}

    def is_sensitive_key(self, key: Any) -> bool:
        if not isinstance(key, str):
            return False
        if key.lower() in self.extra_keys:
            return True
        return any(rule.matches_key(key) for rule in self.key_rules)

    def looks_like_credential(self, value: Any) -> bool:
        if not isinstance(value, str) or is_masked(value):
            return False
        return any(rule.matches_value(value) for rule in self.value_rules)

    def sanitize(self, value: Any, *, _force: bool = False) -> Any:
        if isinstance(value, dict):
            return {
                k: self.sanitize(v, _force=_force or self.is_sensitive_key(k))
                for k, v in value.items()
            }
        if isinstance(value, list):
            return [self.sanitize(item, _force=_force) for item in value]
        if isinstance(value, tuple):
            return tuple(self.sanitize(item, _force=_force) for item in value)
        if _force:
            return mask_value(value)
        if self.looks_like_credential(value):
            return mask_value(value)
        return value


_default_sanitizer = Sanitizer()


def sanitize(value: Any, extra_keys: Iterable[str] = ()) -> Any:
    """Mask sensitive leaves in ``value``, recursing through containers.

    ``extra_keys`` names additional fields to treat as sensitive, such as the
    keys a settings schema declares as ``secret``.
    """
    if extra_keys:
        return Sanitizer(DEFAULT_RULES, extra_keys).sanitize(value)
    return _default_sanitizer.sanitize(value)


def mask_config(schema: Optional[Iterable[Any]], values: dict) -> dict:
    """Sanitize a settings object, masking every field typed ``secret``."""
    secret_keys = [f.key for f in (schema or ()) if getattr(f, "type_name", None) == "secret"]
    return sanitize(values, extra_keys=secret_keys)
