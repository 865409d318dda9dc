_STRING_LIST = {"type": "array", "items": {"type": "string"}}

SETTINGS_FIELD_SCHEMA = {
    "type": "object",
    "required": ["key", "type"],
    "properties": {
        "key": {"type": "string", "minLength": 1},
        "label": {"type": "string"},
        "type": {"type": "string"},
        "required": {"type": "boolean"},
        "help": {"type": "string"},
        "min": {"type": "number"},
        "max": {"type": "number"},
        "minLength": {"type": "integer", "minimum": 0},
        "maxLength": {"type": "integer", "minimum": 0},
        "regex": {"type": "string"},
        "options": {"type": "array"},
        "validation": {
            "type": "object",
            "properties": {
                "pattern": {"type": "string"},
                "regex": {"type": "string"},
                "min": {"type": "number"},
                "max": {"type": "number"},
                "minLength": {"type": "integer", "minimum": 0},
                "maxLength": {"type": "integer", "minimum": 0},
            },
        },
    },
    "additionalProperties": True,
}

ROUTE_SCHEMA = {
    "type": "object",
    "required": ["method", "path"],
    "properties": {
        "method": {"enum": ["GET", "POST", "PUT", "DELETE", "PATCH"]},
        "path": {"type": "string", "minLength": 1},
        "auth": {"enum": ["plugin", "public", "user"]},
        "timeoutSec": {"type": "number", "exclusiveMinimum": 0},
        "idempotent": {"type": "boolean"},
    },
    "additionalProperties": True,
}

JOB_SCHEMA = {
    "type": "object",
    "required": ["name", "route", "cron"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "route": {"type": "string", "minLength": 1},
        "cron": {"type": "string", "minLength": 1},
        "timeoutSec": {"type": "number", "exclusiveMinimum": 0},
        "concurrency": {"type": "integer"},
        "retry": {
            "type": "object",
            "properties": {
                "max": {"type": "integer", "minimum": 0},
                "backoffSec": {"type": "array", "items": {"type": "number", "minimum": 0}},
            },
        },
        "cursor": {
            "type": "object",
            "required": ["key", "ttlSec"],
            "properties": {
                "key": {"type": "string", "minLength": 1},
                "ttlSec": {"type": "integer", "minimum": 1},
            },
        },
    },
    "additionalProperties": True,
}

MANIFEST_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["id", "name", "version"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "name": {"type": "string", "minLength": 1},
        "version": {"type": "string", "minLength": 1},
        "description": {"type": "string"},
        "vendor": {"type": "string"},
        "homepage": {"type": "string"},
        "license": {"type": "string"},
        "compatibility": {
            "type": "object",
            "properties": {
                "min": {"type": "string"},
                "max": {"type": "string"},
            },
        },
        "capabilities": {
            "type": "object",
            "properties": {
                "scopes": _STRING_LIST,
                "network": _STRING_LIST,
                "secrets": _STRING_LIST,
            },
        },
        "settingsSchema": {"type": "array", "items": SETTINGS_FIELD_SCHEMA},
        "menus": {"type": "array", "items": {"type": "object"}},
        "widgets": {"type": "array", "items": {"type": "object"}},
        "routes": {"type": "array", "items": ROUTE_SCHEMA},
        "jobs": {"type": "array", "items": JOB_SCHEMA},
        "rateLimits": {
            "type": "object",
            "properties": {
                "perMinute": {"type": "integer", "minimum": 0},
                "burst": {"type": "integer", "minimum": 0},
            },
        },
        "i18n": {
            "type": "object",
            "properties": {"supported": _STRING_LIST},
        },
        "data": {"type": "boolean"},
    },
    "additionalProperties": True
}
