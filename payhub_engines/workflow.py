"""
payhub_engines.workflow -- Pure approval workflow calculations.

Responsibility:
    Template matching, stage ordering, the actionability predicate used
    for both listing and authorizing decisions, decision planning and
    page slicing.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import payhub_kernel/domain/ types.

Invariants enforced:
    - Template selection is deterministic: highest priority wins, ties go
      to the most recently created template, then to the template id.
    - A stage with no assigned users and no assigned roles is actionable
      by nobody.
    - A project-restricted user with no projects sees nothing.  With
      projects, instances without an invoice are exempt; instances with
      an invoice need the invoice to resolve to one of the user's
      projects.
    - ``plan_decision`` never produces stages_completed > stages_total.

Failure modes:
    - ValueError from ``plan_decision`` when the instance is terminal or
      its current stage is not part of the template.
    - ValueError from ``paginate`` on page < 1 or limit < 1.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import TypeVar
from uuid import UUID

from payhub_engines.tracer import traced_engine
from payhub_kernel.domain.workflow import (
    DecisionAction,
    DecisionPlan,
    InstanceStatus,
    InvoiceRef,
    StageDefinition,
    StageTransition,
    UserScope,
    WorkflowInstance,
    WorkflowTemplate,
)

T = TypeVar("T")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# =============================================================================
# Template resolution
# =============================================================================


def _dimension_matches(allowed: frozenset[int], value: int | None) -> bool:
    if value is None or not allowed:
        return True
    return value in allowed


def template_applies(
    template: WorkflowTemplate,
    invoice_type_id: int | None = None,
    contractor_type_id: int | None = None,
    project_id: int | None = None,
) -> bool:
    """True when every supplied dimension is a wildcard or listed."""
    return (
        _dimension_matches(template.invoice_type_ids, invoice_type_id)
        and _dimension_matches(template.contractor_type_ids, contractor_type_id)
        and _dimension_matches(template.project_ids, project_id)
    )


@traced_engine("workflow.select_template")
def select_template(
    templates: Iterable[WorkflowTemplate],
    *,
    invoice_type_id: int | None = None,
    contractor_type_id: int | None = None,
    project_id: int | None = None,
) -> WorkflowTemplate | None:
    """Pick the active, applicable template with the highest priority.

    Ties are broken by newest ``created_at``; templates without a creation
    time sort oldest.  Returns None when nothing applies.
    """
    candidates = [
        t for t in templates
        if t.is_active
        and template_applies(t, invoice_type_id, contractor_type_id, project_id)
    ]
    if not candidates:
        return None
    return max(
        candidates,
        key=lambda t: (t.priority, t.created_at or _EPOCH, str(t.template_id)),
    )


# =============================================================================
# Stage ordering
# =============================================================================


def first_stage(template: WorkflowTemplate) -> StageDefinition | None:
    if not template.stages:
        return None
    return min(template.stages, key=lambda s: s.position)


def next_stage(
    template: WorkflowTemplate,
    current_position: int,
) -> StageDefinition | None:
    """The stage with the smallest position greater than ``current_position``."""
    later = [s for s in template.stages if s.position > current_position]
    if not later:
        return None
    return min(later, key=lambda s: s.position)


# =============================================================================
# Visibility and authorization
# =============================================================================


def is_assigned(
    stage: StageDefinition,
    user_id: UUID,
    role_code: str | None,
) -> bool:
    """User is listed on the stage, or holds one of its roles."""
    if user_id in stage.assigned_user_ids:
        return True
    return role_code is not None and role_code in stage.assigned_roles


def is_within_project_scope(
    user: UserScope,
    invoice_id: UUID | None,
    invoice: InvoiceRef | None,
) -> bool:
    """Apply the role's project restriction to one instance.

    ``invoice`` is the resolved invoice for ``invoice_id`` (None when the
    instance has no invoice or the invoice could not be found).
    """
    if not user.view_own_project_only:
        return True
    if not user.project_ids:
        return False
    if invoice_id is None:
        return True
    if invoice is None or invoice.project_id is None:
        return False
    return invoice.project_id in user.project_ids


def is_actionable(
    instance: WorkflowInstance,
    stage: StageDefinition | None,
    user: UserScope,
    invoice: InvoiceRef | None = None,
) -> bool:
    """Whether ``user`` may see and decide ``instance`` right now.

    ``stage`` must be the instance's current stage definition.
    """
    if instance.status != InstanceStatus.IN_PROGRESS:
        return False
    if stage is None or stage.stage_id != instance.current_stage_id:
        return False
    if stage.is_unassigned:
        return False
    if not is_assigned(stage, user.user_id, user.role_code):
        return False
    return is_within_project_scope(user, instance.invoice_id, invoice)


# =============================================================================
# Decisions
# =============================================================================


@traced_engine("workflow.plan_decision")
def plan_decision(
    instance: WorkflowInstance,
    template: WorkflowTemplate,
    *,
    action: DecisionAction,
) -> DecisionPlan:
    """Compute the instance's next state for one approve/reject."""
    if instance.status != InstanceStatus.IN_PROGRESS:
        raise ValueError(
            f"Cannot plan a decision for instance in status {instance.status.value}"
        )
    current = template.stage_by_id(instance.current_stage_id)
    if current is None:
        raise ValueError(
            f"Current stage {instance.current_stage_id} is not part of "
            f"template {template.template_id}"
        )

    if action == DecisionAction.REJECT:
        return DecisionPlan(
            action=action,
            transition=StageTransition.REJECTED,
            new_status=InstanceStatus.REJECTED,
            stages_completed=instance.stages_completed,
        )

    completed = instance.stages_completed + 1
    following = next_stage(template, current.position)
    if following is None:
        plan = DecisionPlan(
            action=action,
            transition=StageTransition.APPROVED,
            new_status=InstanceStatus.APPROVED,
            stages_completed=completed,
        )
    else:
        plan = DecisionPlan(
            action=action,
            transition=StageTransition.ADVANCED,
            new_status=InstanceStatus.IN_PROGRESS,
            stages_completed=completed,
            next_stage=following,
        )

    assert plan.stages_completed <= instance.stages_total, (
        f"stages_completed {plan.stages_completed} exceeds "
        f"stages_total {instance.stages_total}"
    )
    return plan


# =============================================================================
# Paging
# =============================================================================


def clamp_page_size(limit: int, max_page_size: int) -> int:
    return max(1, min(limit, max_page_size))


def paginate(items: Sequence[T], page: int, limit: int) -> tuple[tuple[T, ...], int]:
    """Slice one page out of an already filtered and sorted sequence.

    Returns ``(page_items, total)``.
    """
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    start = (page - 1) * limit
    return tuple(items[start:start + limit]), len(items)
