"""
Approval workflow domain types (``payhub_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the payment approval workflow: the instance
lifecycle state machine, template and stage definitions, the append-only
progress log, the user scope used for visibility, and the result records
returned by services and selectors.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* ``INSTANCE_TRANSITIONS`` defines the only valid status transitions.
  ``in_progress`` is the only initial and only non-terminal status;
  terminal statuses have no outgoing edges.
* ``current_stage_id`` is None iff the instance is terminal.
* ``stages_completed`` never exceeds ``stages_total``.
* Progress entries are frozen; the log on an instance only grows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Generic, Protocol, TypeVar
from uuid import UUID


# =========================================================================
# Instance Status Lifecycle
# =========================================================================


class InstanceStatus(str, Enum):
    """Workflow instance lifecycle states."""

    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


INSTANCE_TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    InstanceStatus.IN_PROGRESS: frozenset({
        InstanceStatus.IN_PROGRESS,
        InstanceStatus.APPROVED,
        InstanceStatus.REJECTED,
        InstanceStatus.CANCELLED,
    }),
    InstanceStatus.APPROVED: frozenset(),
    InstanceStatus.REJECTED: frozenset(),
    InstanceStatus.CANCELLED: frozenset(),
}

TERMINAL_INSTANCE_STATUSES: frozenset[InstanceStatus] = frozenset({
    InstanceStatus.APPROVED,
    InstanceStatus.REJECTED,
    InstanceStatus.CANCELLED,
})


class DecisionAction(str, Enum):
    """Decisions an assigned approver can take on the current stage."""

    APPROVE = "approve"
    REJECT = "reject"


class ProgressAction(str, Enum):
    """Actions recorded in the approval progress log."""

    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"


class StageTransition(str, Enum):
    """What a single decision did to the instance."""

    ADVANCED = "advanced"
    APPROVED = "approved"
    REJECTED = "rejected"


# =========================================================================
# Payment side effects
# =========================================================================


@dataclass(frozen=True)
class PaymentWorkflowEffect:
    """Denormalized payment fields written alongside an instance change."""

    status: str
    workflow_status: str
    stamps_approval: bool = False


PAYMENT_AWAITING_APPROVAL = PaymentWorkflowEffect("processing", "in_approval")

PAYMENT_EFFECTS: dict[InstanceStatus, PaymentWorkflowEffect] = {
    InstanceStatus.IN_PROGRESS: PAYMENT_AWAITING_APPROVAL,
    InstanceStatus.APPROVED: PaymentWorkflowEffect(
        "completed", "approved", stamps_approval=True,
    ),
    InstanceStatus.REJECTED: PaymentWorkflowEffect("failed", "rejected"),
    InstanceStatus.CANCELLED: PaymentWorkflowEffect("cancelled", "cancelled"),
}


# =========================================================================
# Templates and stages
# =========================================================================


@dataclass(frozen=True)
class StageDefinition:
    """One approval checkpoint within a template.

    A stage with neither assigned users nor assigned roles is visible to
    nobody and decidable by nobody.
    """

    stage_id: UUID
    template_id: UUID
    position: int
    name: str
    description: str = ""
    assigned_user_ids: frozenset[UUID] = frozenset()
    assigned_roles: frozenset[str] = frozenset()

    @property
    def is_unassigned(self) -> bool:
        return not self.assigned_user_ids and not self.assigned_roles


@dataclass(frozen=True)
class WorkflowTemplate:
    """A named, ordered approval pipeline.

    Empty applicability sets are wildcards.  ``stages`` are sorted by
    position.
    """

    template_id: UUID
    name: str
    priority: int = 0
    description: str = ""
    is_active: bool = True
    invoice_type_ids: frozenset[int] = frozenset()
    contractor_type_ids: frozenset[int] = frozenset()
    project_ids: frozenset[int] = frozenset()
    stages: tuple[StageDefinition, ...] = ()
    created_at: datetime | None = None
    created_by: UUID | None = None

    def stage_by_id(self, stage_id: UUID | None) -> StageDefinition | None:
        for stage in self.stages:
            if stage.stage_id == stage_id:
                return stage
        return None


@dataclass(frozen=True)
class StageSpec:
    """Input shape for a stage when authoring a template."""

    name: str
    description: str = ""
    assigned_user_ids: tuple[UUID, ...] = ()
    assigned_roles: tuple[str, ...] = ()


@dataclass(frozen=True)
class TemplateSpec:
    """Input shape for authoring a template.  Stage order = list order."""

    name: str
    stages: tuple[StageSpec, ...]
    description: str = ""
    priority: int = 0
    is_active: bool = True
    invoice_type_ids: tuple[int, ...] = ()
    contractor_type_ids: tuple[int, ...] = ()
    project_ids: tuple[int, ...] = ()


# =========================================================================
# Instances and the progress log
# =========================================================================


@dataclass(frozen=True)
class ProgressEntry:
    """A single recorded decision (or cancellation). Immutable."""

    entry_id: UUID
    instance_id: UUID
    sequence: int
    stage_id: UUID | None
    stage_name: str
    user_id: UUID
    action: ProgressAction
    comment: str = ""
    recorded_at: datetime | None = None


@dataclass(frozen=True)
class WorkflowInstance:
    """Immutable snapshot of a running or completed approval process."""

    instance_id: UUID
    payment_id: UUID
    template_id: UUID
    status: InstanceStatus
    stages_total: int
    stages_completed: int
    amount: Decimal
    started_by: UUID
    invoice_id: UUID | None = None
    current_stage_id: UUID | None = None
    current_stage_position: int | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    completed_by: UUID | None = None
    version: int = 1
    approval_progress: tuple[ProgressEntry, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_INSTANCE_STATUSES


def instance_invariant_violations(instance: WorkflowInstance) -> list[str]:
    """Return every structural invariant the snapshot breaks (empty if none)."""
    problems: list[str] = []
    if instance.stages_completed > instance.stages_total:
        problems.append("stages_completed exceeds stages_total")
    if instance.is_terminal != (instance.current_stage_id is None):
        problems.append("current_stage_id must be null iff status is terminal")
    if instance.is_terminal != (instance.completed_at is not None):
        problems.append("completed_at must be set iff status is terminal")
    if instance.status == InstanceStatus.IN_PROGRESS:
        if instance.current_stage_position != instance.stages_completed + 1:
            problems.append("current stage position must be stages_completed + 1")
    decisions = [
        e for e in instance.approval_progress
        if e.action in (ProgressAction.APPROVE, ProgressAction.REJECT)
    ]
    if instance.status == InstanceStatus.APPROVED:
        if len(decisions) != instance.stages_completed:
            problems.append("approved instance must log one entry per stage")
    if instance.status == InstanceStatus.REJECTED:
        if len(decisions) != instance.stages_completed + 1:
            problems.append("rejected instance must log approvals plus the rejection")
    return problems


@dataclass(frozen=True)
class DecisionPlan:
    """Next state computed by the engine for one decision."""

    action: DecisionAction
    transition: StageTransition
    new_status: InstanceStatus
    stages_completed: int
    next_stage: StageDefinition | None = None


@dataclass(frozen=True)
class DecisionResult:
    """Result of ``WorkflowService.decide``."""

    instance: WorkflowInstance
    transition: StageTransition
    from_stage_id: UUID
    to_stage_id: UUID | None = None


# =========================================================================
# Identity
# =========================================================================


@dataclass(frozen=True)
class UserScope:
    """What the identity provider knows about an acting user."""

    user_id: UUID
    role_code: str | None = None
    view_own_project_only: bool = False
    project_ids: frozenset[int] = frozenset()


@dataclass(frozen=True)
class UserProfile:
    """Display data for a user appearing in the progress log."""

    user_id: UUID
    full_name: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class InvoiceRef:
    """The slice of an invoice the visibility rules need."""

    invoice_id: UUID
    project_id: int | None = None
    invoice_type_id: int | None = None
    contractor_type_id: int | None = None


class IdentityProvider(Protocol):
    """Pluggable interface for user lookups."""

    def resolve_user(self, user_id: UUID) -> UserScope | None:
        """Return the user's role and project scope, None if unknown."""
        ...

    def describe_users(self, user_ids: frozenset[UUID]) -> dict[UUID, UserProfile]:
        """Batch-resolve display data for the given users."""
        ...


# =========================================================================
# Read models
# =========================================================================

T = TypeVar("T")

SORTABLE_INSTANCE_FIELDS: frozenset[str] = frozenset({
    "started_at",
    "amount",
    "stages_completed",
    "stages_total",
})


@dataclass(frozen=True)
class PageRequest:
    """Caller-specified paging and sort."""

    page: int = 1
    limit: int = 20
    sort_by: str = "started_at"
    sort_order: str = "desc"


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of results plus totals after filtering."""

    items: tuple[T, ...]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


@dataclass(frozen=True)
class EnrichedProgressEntry:
    """Progress entry joined with the deciding user's display data."""

    entry: ProgressEntry
    user: UserProfile | None = None


@dataclass(frozen=True)
class WorkflowHistory:
    """Instance, its template's stages, and the enriched progress log."""

    instance: WorkflowInstance
    template_name: str
    stages: tuple[StageDefinition, ...]
    approval_progress: tuple[EnrichedProgressEntry, ...] = field(default=())


@dataclass(frozen=True)
class ApprovalStats:
    """Per-user approval counters."""

    pending: int
    completed_today: int
    my_approvals: int
