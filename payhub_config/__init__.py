"""
payhub_config -- single public entrypoint for PayHub configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component may read configuration
    files or environment variables directly.

Architecture position:
    Configuration -- YAML-driven, validated before use.  This package sits
    above ``payhub_kernel``.  The kernel MUST NEVER import from
    ``payhub_config``; ``payhub_config.bridges`` translates configuration
    into kernel-compatible inputs.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - The configuration must pass validation before it is returned.
    - ``PAYHUB_DATABASE_URL`` overrides ``database.url`` and is read only here.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- parse or validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``PAYHUB_CONFIG_TRACE`` log entry with the source path, checksum and
    template count.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path

from payhub_config.loader import load_config_file
from payhub_config.schema import PayHubConfig
from payhub_config.validator import validate_configuration

_logger = logging.getLogger("payhub_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

DATABASE_URL_ENV = "PAYHUB_DATABASE_URL"


def get_active_config(config_path: Path | str | None = None) -> PayHubConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a YAML configuration file.
            Defaults to payhub_config/sets/default.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If configuration validation fails.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    config = load_config_file(path)

    url_override = os.environ.get(DATABASE_URL_ENV)
    if url_override:
        config = dataclasses.replace(
            config,
            database=dataclasses.replace(config.database, url=url_override),
        )

    validation = validate_configuration(config)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning("config_validation_warning", extra={"warning": warning})

    _logger.info(
        "PAYHUB_CONFIG_TRACE",
        extra={
            "trace_type": "PAYHUB_CONFIG_TRACE",
            "source_path": config.source_path,
            "checksum": config.checksum,
            "template_count": len(config.templates),
            "require_template": config.engine.require_template,
            "database_url_overridden": bool(url_override),
        },
    )
    return config


__all__ = ["PayHubConfig", "get_active_config", "DATABASE_URL_ENV"]
