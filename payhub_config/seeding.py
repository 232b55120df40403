"""
Seed configured workflow templates into a database.

Templates are matched by name: a configured template whose name already
exists in the database is left untouched, so seeding is safe to re-run.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from payhub_config.bridges import build_template_spec
from payhub_config.schema import PayHubConfig
from payhub_kernel.domain.clock import Clock
from payhub_kernel.domain.workflow import WorkflowTemplate
from payhub_kernel.models.workflow import WorkflowTemplateModel
from payhub_kernel.services.template_service import TemplateService

_logger = logging.getLogger("payhub_kernel.config.seeding")


def seed_configured_templates(
    session: Session,
    config: PayHubConfig,
    created_by: UUID,
    clock: Clock | None = None,
) -> list[WorkflowTemplate]:
    """Create every configured template that does not exist yet.

    Returns the templates that were created.  Flushes only; the caller
    commits.
    """
    existing = set(
        session.execute(select(WorkflowTemplateModel.name)).scalars().all()
    )
    service = TemplateService(session, clock=clock)

    created: list[WorkflowTemplate] = []
    for template in config.templates:
        if template.name in existing:
            _logger.info("template_seed_skipped", extra={"template_name": template.name})
            continue
        created.append(service.create_template(build_template_spec(template), created_by))
        existing.add(template.name)

    _logger.info(
        "templates_seeded",
        extra={
            "created_count": len(created),
            "configured_count": len(config.templates),
        },
    )
    return created
