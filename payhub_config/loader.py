"""
Configuration Loader (``payhub_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the typed
``payhub_config.schema`` dataclasses.  The single public entry point for
runtime config is ``payhub_config.get_active_config()``.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  No dependency on the kernel
or the engines.

Invariants enforced
-------------------
* Missing required keys raise ``KeyError``; wrong shapes raise
  ``ValueError``.  Optional keys fall back to the schema defaults.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` is a deterministic SHA-256 of the parsed data.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from payhub_config.schema import (
    DatabaseSettings,
    EngineSettings,
    PayHubConfig,
    StageDef,
    TemplateDef,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping")
    return data


def _int_tuple(value: Any, field_name: str) -> tuple[int, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ValueError(f"{field_name} must be a list, got {value!r}")
    return tuple(int(v) for v in value)


def _str_tuple(value: Any, field_name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ValueError(f"{field_name} must be a list, got {value!r}")
    return tuple(str(v) for v in value)


def parse_engine_settings(data: dict[str, Any]) -> EngineSettings:
    """Parse the ``engine`` section."""
    defaults = EngineSettings()
    return EngineSettings(
        max_page_size=int(data.get("max_page_size", defaults.max_page_size)),
        default_page_size=int(data.get("default_page_size", defaults.default_page_size)),
        default_sort_by=data.get("default_sort_by", defaults.default_sort_by),
        default_sort_order=data.get("default_sort_order", defaults.default_sort_order),
        require_template=bool(data.get("require_template", defaults.require_template)),
        stats_cache_ttl_seconds=int(
            data.get("stats_cache_ttl_seconds", defaults.stats_cache_ttl_seconds)
        ),
    )


def parse_database_settings(data: dict[str, Any]) -> DatabaseSettings:
    """Parse the ``database`` section."""
    defaults = DatabaseSettings()
    return DatabaseSettings(
        url=data.get("url", defaults.url),
        echo=bool(data.get("echo", defaults.echo)),
        pool_size=int(data.get("pool_size", defaults.pool_size)),
        max_overflow=int(data.get("max_overflow", defaults.max_overflow)),
        pool_timeout=int(data.get("pool_timeout", defaults.pool_timeout)),
    )


def parse_stage(data: dict[str, Any]) -> StageDef:
    """Parse one stage of a template."""
    return StageDef(
        name=data["name"],
        description=data.get("description", ""),
        assigned_roles=_str_tuple(data.get("assigned_roles"), "assigned_roles"),
        assigned_user_ids=_str_tuple(data.get("assigned_user_ids"), "assigned_user_ids"),
    )


def parse_template(data: dict[str, Any]) -> TemplateDef:
    """Parse one seed template."""
    return TemplateDef(
        name=data["name"],
        description=data.get("description", ""),
        priority=int(data.get("priority", 0)),
        is_active=bool(data.get("is_active", True)),
        invoice_type_ids=_int_tuple(data.get("invoice_type_ids"), "invoice_type_ids"),
        contractor_type_ids=_int_tuple(
            data.get("contractor_type_ids"), "contractor_type_ids",
        ),
        project_ids=_int_tuple(data.get("project_ids"), "project_ids"),
        stages=tuple(parse_stage(s) for s in data.get("stages") or ()),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the raw configuration mapping."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_config(data: dict[str, Any], source_path: str | None = None) -> PayHubConfig:
    """Parse a whole configuration mapping."""
    return PayHubConfig(
        engine=parse_engine_settings(data.get("engine") or {}),
        database=parse_database_settings(data.get("database") or {}),
        templates=tuple(parse_template(t) for t in data.get("templates") or ()),
        source_path=source_path,
        checksum=compute_checksum(data),
    )


def load_config_file(path: Path) -> PayHubConfig:
    """Load and parse a configuration file."""
    return parse_config(load_yaml_file(path), source_path=str(path))
