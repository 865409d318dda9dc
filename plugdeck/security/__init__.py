from .sanitizer import REDACTED, RedactionRule, Sanitizer, mask_config, mask_value, sanitize

__all__ = [
    "REDACTED",
    "RedactionRule",
    "Sanitizer",
    "mask_config",
    "mask_value",
    "sanitize",
]
