#!/usr/bin/env python3
"""
Seed the database with the workflow templates from a configuration file.

Creates missing tables, then inserts every configured template whose name
is not already present.  Existing templates are never modified.

Usage:
    python3 scripts/seed_workflows.py [--config PATH] [--created-by UUID]

The database URL comes from the configuration (``database.url``) unless
PAYHUB_DATABASE_URL is set.
"""

import argparse
import sys
from pathlib import Path
from uuid import UUID

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from payhub_config import get_active_config
from payhub_config.seeding import seed_configured_templates
from payhub_kernel.db.engine import create_tables, init_engine_from_url, session_scope

SYSTEM_USER_ID = UUID("00000000-0000-0000-0000-000000000001")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML configuration file (default: payhub_config/sets/default.yaml)",
    )
    parser.add_argument(
        "--created-by",
        type=UUID,
        default=SYSTEM_USER_ID,
        help="User id recorded as the templates' creator",
    )
    args = parser.parse_args(argv)

    config = get_active_config(args.config)
    print(f"Configuration: {config.source_path}")
    print(f"  checksum:  {config.checksum[:16]}...")
    print(f"  templates: {len(config.templates)}")

    init_engine_from_url(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
        pool_timeout=config.database.pool_timeout,
    )
    create_tables()

    with session_scope() as session:
        created = seed_configured_templates(session, config, args.created_by)

    for template in created:
        print(f"  created: {template.name} ({len(template.stages)} stages)")
    print(f"Seeded {len(created)} of {len(config.templates)} template(s).")
    return 0


if __name__ == "__main__":
    sys.exit(main())
