"""
Config -> Kernel Bridges.

Functions that convert configuration artifacts into kernel-compatible
inputs.  These live in payhub_config (the producer) because the kernel
must NEVER import payhub_config.

Usage:
    from payhub_config.bridges import build_template_spec, build_workflow_service

    config = get_active_config()
    specs = [build_template_spec(t) for t in config.templates]
    service = build_workflow_service(session, config.engine)
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from payhub_config.schema import EngineSettings, TemplateDef
from payhub_kernel.domain.clock import Clock
from payhub_kernel.domain.workflow import (
    IdentityProvider,
    PageRequest,
    StageSpec,
    TemplateSpec,
)
from payhub_kernel.selectors.workflow_selector import WorkflowSelector
from payhub_kernel.services.workflow_service import WorkflowService
from payhub_kernel.utils.cache import TTLCache


def build_template_spec(template: TemplateDef) -> TemplateSpec:
    """Translate a configured template into the kernel's authoring input."""
    return TemplateSpec(
        name=template.name,
        description=template.description,
        priority=template.priority,
        is_active=template.is_active,
        invoice_type_ids=template.invoice_type_ids,
        contractor_type_ids=template.contractor_type_ids,
        project_ids=template.project_ids,
        stages=tuple(
            StageSpec(
                name=stage.name,
                description=stage.description,
                assigned_roles=stage.assigned_roles,
                assigned_user_ids=tuple(UUID(u) for u in stage.assigned_user_ids),
            )
            for stage in template.stages
        ),
    )


def build_page_request(
    settings: EngineSettings,
    page: int = 1,
    limit: int | None = None,
) -> PageRequest:
    """A PageRequest carrying the configured defaults."""
    return PageRequest(
        page=page,
        limit=limit if limit is not None else settings.default_page_size,
        sort_by=settings.default_sort_by,
        sort_order=settings.default_sort_order,
    )


def build_stats_cache(settings: EngineSettings, clock: Clock | None = None) -> TTLCache:
    """A caller-owned cache for approval counters with the configured TTL."""
    return TTLCache(settings.stats_cache_ttl_seconds, clock=clock)


def build_workflow_service(
    session: Session,
    settings: EngineSettings,
    identity: IdentityProvider | None = None,
    clock: Clock | None = None,
) -> WorkflowService:
    """WorkflowService honouring the configured template policy."""
    return WorkflowService(
        session,
        identity=identity,
        clock=clock,
        require_template=settings.require_template,
    )


def build_workflow_selector(
    session: Session,
    settings: EngineSettings,
    identity: IdentityProvider | None = None,
    clock: Clock | None = None,
) -> WorkflowSelector:
    """WorkflowSelector capped at the configured page size."""
    return WorkflowSelector(
        session,
        identity=identity,
        clock=clock,
        max_page_size=settings.max_page_size,
    )
