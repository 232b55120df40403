"""
PayHub configuration schema.

Defines the human-authored configuration artifact: engine settings,
database connection settings and the seed workflow templates.  YAML is
parsed into these frozen types by the loader and checked by the
validator before anything uses it.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Engine and database settings
# ---------------------------------------------------------------------------

HARD_MAX_PAGE_SIZE = 50


@dataclass(frozen=True)
class EngineSettings:
    """Tunables of the workflow engine."""

    max_page_size: int = HARD_MAX_PAGE_SIZE
    default_page_size: int = 20
    default_sort_by: str = "started_at"
    default_sort_order: str = "desc"
    require_template: bool = False
    stats_cache_ttl_seconds: int = 60


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection settings handed to ``init_engine_from_url``."""

    url: str = "sqlite:///payhub.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30


# ---------------------------------------------------------------------------
# Seed templates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StageDef:
    """One stage of a configured template."""

    name: str
    description: str = ""
    assigned_roles: tuple[str, ...] = ()
    assigned_user_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class TemplateDef:
    """A workflow template to seed."""

    name: str
    stages: tuple[StageDef, ...]
    description: str = ""
    priority: int = 0
    is_active: bool = True
    invoice_type_ids: tuple[int, ...] = ()
    contractor_type_ids: tuple[int, ...] = ()
    project_ids: tuple[int, ...] = ()


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PayHubConfig:
    """The complete configuration as loaded from one YAML file."""

    engine: EngineSettings = field(default_factory=EngineSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    templates: tuple[TemplateDef, ...] = ()
    source_path: str | None = None
    checksum: str = ""
