"""
Configuration Validator (``payhub_config.validator``).

Responsibility
--------------
Validates a ``PayHubConfig`` before anything is built from it.

Invariants enforced
-------------------
* ``max_page_size`` is 1..50 and ``default_page_size`` fits inside it.
* Default sort field and order are ones the listing accepts.
* Template names are unique and non-blank; each template has at least one
  stage; stage names are non-blank.
* A stage with neither roles nor users is allowed but warned about, since
  nobody will be able to act on it.

Failure modes
-------------
* Validation errors (``ConfigValidationResult.errors``)  -> configuration
  MUST NOT be used.
* Validation warnings  -> configuration is usable but should be reviewed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from payhub_config.schema import HARD_MAX_PAGE_SIZE, PayHubConfig

_SORT_FIELDS = frozenset({"started_at", "amount", "stages_completed", "stages_total"})


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    * Warnings do not block loading but should be reviewed.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: PayHubConfig) -> ConfigValidationResult:
    """Validate a parsed configuration."""
    result = ConfigValidationResult()

    _validate_engine(config, result)
    _validate_database(config, result)
    _validate_templates(config, result)

    return result


def _validate_engine(config: PayHubConfig, result: ConfigValidationResult) -> None:
    engine = config.engine
    if not 1 <= engine.max_page_size <= HARD_MAX_PAGE_SIZE:
        result.add_error(
            f"engine.max_page_size must be between 1 and {HARD_MAX_PAGE_SIZE}, "
            f"got {engine.max_page_size}"
        )
    if not 1 <= engine.default_page_size <= engine.max_page_size:
        result.add_error(
            f"engine.default_page_size must be between 1 and max_page_size, "
            f"got {engine.default_page_size}"
        )
    if engine.default_sort_by not in _SORT_FIELDS:
        result.add_error(
            f"engine.default_sort_by '{engine.default_sort_by}' is not one of "
            f"{sorted(_SORT_FIELDS)}"
        )
    if engine.default_sort_order not in ("asc", "desc"):
        result.add_error(
            f"engine.default_sort_order must be 'asc' or 'desc', "
            f"got '{engine.default_sort_order}'"
        )
    if engine.stats_cache_ttl_seconds < 0:
        result.add_error("engine.stats_cache_ttl_seconds must not be negative")


def _validate_database(config: PayHubConfig, result: ConfigValidationResult) -> None:
    if not config.database.url:
        result.add_error("database.url must not be empty")
    elif config.database.url.startswith("sqlite"):
        result.add_warning(
            "database.url points at SQLite; row locks are not taken there"
        )


def _validate_templates(config: PayHubConfig, result: ConfigValidationResult) -> None:
    seen: set[str] = set()
    for template in config.templates:
        if not template.name.strip():
            result.add_error("Template with a blank name")
            continue
        if template.name in seen:
            result.add_error(f"Duplicate template name: '{template.name}'")
        seen.add(template.name)

        if not template.stages:
            result.add_error(f"Template '{template.name}' has no stages")
        for index, stage in enumerate(template.stages, start=1):
            if not stage.name.strip():
                result.add_error(
                    f"Template '{template.name}' stage {index} has a blank name"
                )
            if not stage.assigned_roles and not stage.assigned_user_ids:
                result.add_warning(
                    f"Template '{template.name}' stage '{stage.name}' has no "
                    "assigned roles or users; nobody can act on it"
                )
            for user_id in stage.assigned_user_ids:
                try:
                    UUID(user_id)
                except ValueError:
                    result.add_error(
                        f"Template '{template.name}' stage '{stage.name}': "
                        f"'{user_id}' is not a valid user id"
                    )
