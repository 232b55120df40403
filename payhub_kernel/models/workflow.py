"""
Module: payhub_kernel.models.workflow
Responsibility: ORM persistence for workflow templates, their stages,
    workflow instances and the append-only approval progress log.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Stage positions are unique within a template.
    - At most one in_progress instance per payment: partial unique index
      on ``payment_id`` where ``status = 'in_progress'``.
    - Optimistic locking: ``version`` is the mapper's version_id_col, so
      an UPDATE from a stale snapshot matches zero rows.
    - Progress sequence numbers are unique per instance.
    - Progress entries are append-only: ORM listeners refuse UPDATE and
      DELETE.

Failure modes:
    - IntegrityError on a second in_progress instance for a payment.
    - IntegrityError on a duplicate (instance_id, sequence).
    - StaleDataError when the version check fails at flush.
    - ImmutabilityViolationError on progress entry UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payhub_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from payhub_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from payhub_kernel.domain.workflow import (
        ProgressEntry,
        StageDefinition,
        WorkflowInstance,
        WorkflowTemplate,
    )


def _uuid_set(values: list[str] | None) -> frozenset[UUID]:
    return frozenset(UUID(v) for v in values or ())


class WorkflowTemplateModel(TrackedBase):
    """Persistent workflow template.

    Contract:
        Templates are soft-disabled via ``is_active`` and never deleted.
        Empty applicability lists act as wildcards.
    """

    __tablename__ = "workflow_templates"

    __table_args__ = (
        Index("ix_workflow_templates_active_priority", "is_active", "priority"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Applicability rules (JSON arrays of ids; empty = all)
    invoice_type_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    contractor_type_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    project_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    stages: Mapped[list["WorkflowStageModel"]] = relationship(
        "WorkflowStageModel",
        back_populates="template",
        order_by="WorkflowStageModel.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<WorkflowTemplate {self.id} {self.name!r} priority={self.priority}>"

    def to_dto(self) -> WorkflowTemplate:
        """Convert ORM model to frozen domain DTO."""
        from payhub_kernel.domain.workflow import WorkflowTemplate as TemplateDTO

        return TemplateDTO(
            template_id=self.id,
            name=self.name,
            description=self.description,
            is_active=self.is_active,
            priority=self.priority,
            invoice_type_ids=frozenset(self.invoice_type_ids or ()),
            contractor_type_ids=frozenset(self.contractor_type_ids or ()),
            project_ids=frozenset(self.project_ids or ()),
            stages=tuple(
                s.to_dto() for s in sorted(self.stages, key=lambda s: s.position)
            ),
            created_at=self.created_at,
            created_by=self.created_by_id,
        )


class WorkflowStageModel(Base):
    """One ordered approval checkpoint of a template."""

    __tablename__ = "workflow_stages"

    __table_args__ = (
        UniqueConstraint(
            "template_id", "position",
            name="uq_workflow_stages_template_position",
        ),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_templates.id"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)

    # Assignment (JSON arrays); both empty means nobody may act
    assigned_user_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    assigned_roles: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    template: Mapped["WorkflowTemplateModel"] = relationship(
        "WorkflowTemplateModel",
        back_populates="stages",
    )

    def __repr__(self) -> str:
        return f"<WorkflowStage {self.id} #{self.position} {self.name!r}>"

    def to_dto(self) -> StageDefinition:
        """Convert ORM model to frozen domain DTO."""
        from payhub_kernel.domain.workflow import StageDefinition as StageDTO

        return StageDTO(
            stage_id=self.id,
            template_id=self.template_id,
            position=self.position,
            name=self.name,
            description=self.description,
            assigned_user_ids=_uuid_set(self.assigned_user_ids),
            assigned_roles=frozenset(self.assigned_roles or ()),
        )


class WorkflowInstanceModel(Base):
    """Persistent workflow instance bound to one payment.

    Contract:
        Mutated only by approve, reject and cancel.  Never deleted.

    Guarantees:
        - At most one in_progress instance per payment.
        - ``version`` increments on every UPDATE; a stale UPDATE raises
          StaleDataError at flush.
    """

    __tablename__ = "workflow_instances"

    __table_args__ = (
        CheckConstraint(
            "status IN ('in_progress', 'approved', 'rejected', 'cancelled')",
            name="ck_workflow_instances_valid_status",
        ),
        CheckConstraint(
            "stages_completed <= stages_total",
            name="ck_workflow_instances_progress_bounded",
        ),
        Index(
            "ix_workflow_instances_payment_active_unique",
            "payment_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
        Index("ix_workflow_instances_status_started", "status", "started_at"),
    )

    payment_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("payments.id"), nullable=False,
    )
    invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True,
    )
    template_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_templates.id"), nullable=False,
    )
    current_stage_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("workflow_stages.id"), nullable=True,
    )
    current_stage_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stages_total: Mapped[int] = mapped_column(Integer, nullable=False)
    stages_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="in_progress",
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    started_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False,
    )
    started_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    completed_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    template: Mapped["WorkflowTemplateModel"] = relationship(
        "WorkflowTemplateModel",
    )

    progress_entries: Mapped[list["ProgressEntryModel"]] = relationship(
        "ProgressEntryModel",
        back_populates="instance",
        order_by="ProgressEntryModel.sequence",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowInstance {self.id} payment={self.payment_id} "
            f"status={self.status} {self.stages_completed}/{self.stages_total}>"
        )

    def to_dto(self, include_progress: bool = True) -> WorkflowInstance:
        """Convert ORM model to frozen domain DTO.

        With ``include_progress=False`` the progress entries are not touched
        and ``approval_progress`` is empty.
        """
        from payhub_kernel.domain.workflow import (
            InstanceStatus,
            WorkflowInstance as InstanceDTO,
        )

        return InstanceDTO(
            instance_id=self.id,
            payment_id=self.payment_id,
            invoice_id=self.invoice_id,
            template_id=self.template_id,
            status=InstanceStatus(self.status),
            current_stage_id=self.current_stage_id,
            current_stage_position=self.current_stage_position,
            stages_total=self.stages_total,
            stages_completed=self.stages_completed,
            amount=self.amount,
            started_at=self.started_at,
            started_by=self.started_by,
            completed_at=self.completed_at,
            completed_by=self.completed_by,
            version=self.version,
            approval_progress=(
                tuple(e.to_dto() for e in self.progress_entries)
                if include_progress else ()
            ),
        )


class ProgressEntryModel(Base):
    """Persistent approval progress entry. Append-only.

    Contract:
        Entries are immutable once created -- no UPDATE, no DELETE.
    """

    __tablename__ = "workflow_progress_entries"

    __table_args__ = (
        UniqueConstraint(
            "instance_id", "sequence",
            name="uq_workflow_progress_instance_sequence",
        ),
        CheckConstraint(
            "action IN ('approve', 'reject', 'cancel')",
            name="ck_workflow_progress_valid_action",
        ),
        Index("ix_workflow_progress_user_action", "user_id", "action"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_instances.id"), nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    stage_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    stage_name: Mapped[str] = mapped_column(String(200), nullable=False)
    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    comment: Mapped[str] = mapped_column(Text, default="", nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False,
    )

    instance: Mapped["WorkflowInstanceModel"] = relationship(
        "WorkflowInstanceModel",
        back_populates="progress_entries",
    )

    def __repr__(self) -> str:
        return (
            f"<ProgressEntry {self.id} instance={self.instance_id} "
            f"#{self.sequence} {self.action}>"
        )

    def to_dto(self) -> ProgressEntry:
        """Convert ORM model to frozen domain DTO."""
        from payhub_kernel.domain.workflow import (
            ProgressAction,
            ProgressEntry as EntryDTO,
        )

        return EntryDTO(
            entry_id=self.id,
            instance_id=self.instance_id,
            sequence=self.sequence,
            stage_id=self.stage_id,
            stage_name=self.stage_name,
            user_id=self.user_id,
            action=ProgressAction(self.action),
            comment=self.comment,
            recorded_at=self.recorded_at,
        )


# =============================================================================
# ORM-Level Immutability for Progress Entries (Append-Only)
# =============================================================================


@event.listens_for(ProgressEntryModel, "before_update")
def prevent_progress_update(mapper, connection, target):
    """Prevent updates to approval progress entries."""
    raise ImmutabilityViolationError(
        entity_type="ProgressEntry",
        entity_id=str(target.id),
        reason="Approval progress entries are immutable -- cannot modify",
    )


@event.listens_for(ProgressEntryModel, "before_delete")
def prevent_progress_delete(mapper, connection, target):
    """Prevent deletion of approval progress entries."""
    raise ImmutabilityViolationError(
        entity_type="ProgressEntry",
        entity_id=str(target.id),
        reason="Approval progress entries are immutable -- cannot delete",
    )
