"""
JSON Schemas

Schemas for the documents Mason reads:
- APP_SCHEMA: app.yml at the project root
- MODULE_SCHEMA: <module>/module.yml
- CACHE_METADATA_SCHEMA: <cache>/<module>-<hash>/metadata.json

Usage:
    from mason.schemas import APP_VALIDATOR, schema_errors

    errors = schema_errors(APP_VALIDATOR, payload)
    if errors:
        print("\\n".join(errors))
"""

from __future__ import annotations

from typing import Any, Dict, List

from jsonschema import Draft202012Validator

SCHEMA_VERSION = "1.0.0"

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

INFO_PLIST_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "launch-screen": {"type": "boolean"},
        "required-device-capabilities": _STRING_LIST,
        "supported-orientations": _STRING_LIST,
        "custom-entries": {"type": "object"},
    },
    "additionalProperties": False,
}

APP_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["app-name", "bundle-id", "modules"],
    "properties": {
        "app-name": {"type": "string", "minLength": 1},
        "bundle-id": {"type": "string", "minLength": 1},
        "source-dir": {"type": "string"},
        "resources-dir": {"type": "string"},
        "deployment-target": {"type": ["string", "number"]},
        "swift-version": {"type": ["string", "number"]},
        "modules": _STRING_LIST,
        "plist": {
            "type": "object",
            "properties": {
                "version": {"type": ["string", "number"]},
                "build-number": {"type": ["string", "number"]},
                "info-plist": INFO_PLIST_SCHEMA,
            },
        },
        "build": {
            "type": "object",
            "properties": {
                "max-workers": {"type": "integer", "minimum": 1},
                "level-strategy": {"enum": ["depth", "count"]},
                "cache-dir": {"type": "string"},
            },
            "additionalProperties": False,
        },
    },
}

MODULE_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["module-name"],
    "properties": {
        "module-name": {"type": "string", "minLength": 1},
        "dependencies": {"anyOf": [_STRING_LIST, {"type": "null"}]},
        "source-dir": {"type": "string"},
        "resources-dir": {"type": "string"},
    },
}

CACHE_METADATA_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["key", "timestamp", "artifacts"],
    "properties": {
        "key": {
            "type": "object",
            "required": ["name", "source_hash", "dependency_hashes", "compiler_args"],
            "properties": {
                "name": {"type": "string"},
                "source_hash": {"type": "string"},
                "dependency_hashes": {"type": "object", "additionalProperties": {"type": "string"}},
                "compiler_args": {"type": "string"},
            },
        },
        "timestamp": {"type": "string"},
        "artifacts": _STRING_LIST,
    },
}

APP_VALIDATOR = Draft202012Validator(APP_SCHEMA)
MODULE_VALIDATOR = Draft202012Validator(MODULE_SCHEMA)
CACHE_METADATA_VALIDATOR = Draft202012Validator(CACHE_METADATA_SCHEMA)


def schema_errors(validator: Draft202012Validator, payload: Any) -> List[str]:
    """Return readable '<path>: <message>' strings for every schema violation."""
    errors = sorted(validator.iter_errors(payload), key=lambda e: [str(p) for p in e.path])
    return [f"- {list(e.path)}: {e.message}" for e in errors]
