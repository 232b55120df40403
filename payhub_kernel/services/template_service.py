"""
payhub_kernel.services.template_service -- Workflow template administration.

Responsibility:
    Authoring operations on workflow templates: create, update fields,
    enable/disable, add, edit, remove and reorder stages, and clone.
    Templates are never hard-deleted.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - A template has at least one stage; stage names are non-blank.
    - Stage positions are 1..n in the authored order, unique per template.
    - Stages of a template with running instances are not added, removed
      or reordered, since those instances advance by position.  Renaming
      or reassigning a stage is allowed.
    - The last stage of a template cannot be removed.

Failure modes:
    - WorkflowValidationError on blank names, no stages, a reorder list
      that is not exactly the template's stage ids, an unknown stage id,
      an out-of-range position, or running instances blocking a stage
      list change.
    - TemplateNotFoundError when the template id is unknown.
"""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID, uuid4

from sqlalchemy import func, select

from payhub_kernel.db.guards import persistence_guard
from payhub_kernel.domain.workflow import (
    InstanceStatus,
    StageSpec,
    TemplateSpec,
    WorkflowTemplate,
)
from payhub_kernel.exceptions import TemplateNotFoundError, WorkflowValidationError
from payhub_kernel.logging_config import LogContext, get_logger
from payhub_kernel.models.workflow import (
    WorkflowInstanceModel,
    WorkflowStageModel,
    WorkflowTemplateModel,
)
from payhub_kernel.services.base import BaseService

logger = get_logger("services.template")


def _validate_spec(spec: TemplateSpec) -> None:
    if not spec.name or not spec.name.strip():
        raise WorkflowValidationError("name", "template name must not be blank")
    if not spec.stages:
        raise WorkflowValidationError("stages", "a template needs at least one stage")
    for index, stage in enumerate(spec.stages, start=1):
        if not stage.name or not stage.name.strip():
            raise WorkflowValidationError(
                "stages", f"stage {index} name must not be blank",
            )


def _id_list(values: Sequence[int] | None) -> list[int] | None:
    return None if values is None else sorted(set(values))


def _stage_model(stage: StageSpec, position: int) -> WorkflowStageModel:
    return WorkflowStageModel(
        id=uuid4(),
        position=position,
        name=stage.name,
        description=stage.description,
        assigned_user_ids=sorted(str(u) for u in stage.assigned_user_ids),
        assigned_roles=sorted(set(stage.assigned_roles)),
    )


class TemplateService(BaseService):
    """Writes for workflow template definitions."""

    def create_template(self, spec: TemplateSpec, created_by: UUID) -> WorkflowTemplate:
        """Create a template with stages numbered 1..n in the given order."""
        _validate_spec(spec)

        with LogContext.bind(actor_id=str(created_by)):
            with persistence_guard("create_template"):
                model = WorkflowTemplateModel(
                    id=uuid4(),
                    name=spec.name,
                    description=spec.description,
                    is_active=spec.is_active,
                    priority=spec.priority,
                    invoice_type_ids=sorted(set(spec.invoice_type_ids)),
                    contractor_type_ids=sorted(set(spec.contractor_type_ids)),
                    project_ids=sorted(set(spec.project_ids)),
                    created_at=self._clock.now(),
                    created_by_id=created_by,
                    stages=[
                        _stage_model(stage, position)
                        for position, stage in enumerate(spec.stages, start=1)
                    ],
                )
                self.session.add(model)
                self.session.flush()

                logger.info(
                    "template_created",
                    extra={
                        "template_id": str(model.id),
                        "template_name": model.name,
                        "priority": model.priority,
                        "stage_count": len(model.stages),
                    },
                )
                return model.to_dto()

    def set_active(self, template_id: UUID, is_active: bool) -> WorkflowTemplate:
        """Soft enable or disable a template."""
        with persistence_guard("set_template_active"):
            model = self._load(template_id)
            model.is_active = is_active
            self.session.flush()

            logger.info(
                "template_activation_changed",
                extra={"template_id": str(template_id), "is_active": is_active},
            )
            return model.to_dto()

    def reorder_stages(
        self,
        template_id: UUID,
        stage_ids: Sequence[UUID],
    ) -> WorkflowTemplate:
        """Renumber stages 1..n in the order of ``stage_ids``."""
        with persistence_guard("reorder_stages"):
            model = self._load(template_id)
            by_id = {stage.id: stage for stage in model.stages}

            if len(stage_ids) != len(set(stage_ids)) or set(stage_ids) != set(by_id):
                raise WorkflowValidationError(
                    "stage_ids", "must list each of the template's stages exactly once",
                )

            self._require_no_running(template_id, "stage order")
            self._renumber([by_id[stage_id] for stage_id in stage_ids])

            logger.info(
                "template_stages_reordered",
                extra={
                    "template_id": str(template_id),
                    "stage_ids": [str(s) for s in stage_ids],
                },
            )
            return model.to_dto()

    def update_template(
        self,
        template_id: UUID,
        *,
        name: str | None = None,
        description: str | None = None,
        priority: int | None = None,
        invoice_type_ids: Sequence[int] | None = None,
        contractor_type_ids: Sequence[int] | None = None,
        project_ids: Sequence[int] | None = None,
    ) -> WorkflowTemplate:
        """Change template fields; arguments left as None are untouched.

        Only template selection for new instances is affected, so running
        instances do not block an update.
        """
        if name is not None and not name.strip():
            raise WorkflowValidationError("name", "template name must not be blank")

        changes = {
            "name": name,
            "description": description,
            "priority": priority,
            "invoice_type_ids": _id_list(invoice_type_ids),
            "contractor_type_ids": _id_list(contractor_type_ids),
            "project_ids": _id_list(project_ids),
        }
        changes = {field: value for field, value in changes.items() if value is not None}

        with persistence_guard("update_template"):
            model = self._load(template_id)
            for field, value in changes.items():
                setattr(model, field, value)
            self.session.flush()

            logger.info(
                "template_updated",
                extra={
                    "template_id": str(template_id),
                    "changed_fields": sorted(changes),
                },
            )
            return model.to_dto()

    def add_stage(
        self,
        template_id: UUID,
        stage: StageSpec,
        position: int | None = None,
    ) -> WorkflowTemplate:
        """Insert a stage at ``position`` (1-based), or append it.

        Stages at or after ``position`` move down by one.
        """
        if not stage.name or not stage.name.strip():
            raise WorkflowValidationError("name", "stage name must not be blank")

        with persistence_guard("add_stage"):
            model = self._load(template_id)
            ordered = sorted(model.stages, key=lambda s: s.position)
            if position is None:
                position = len(ordered) + 1
            if not 1 <= position <= len(ordered) + 1:
                raise WorkflowValidationError(
                    "position", f"must be between 1 and {len(ordered) + 1}, got {position}",
                )
            self._require_no_running(template_id, "stage list")

            new_stage = _stage_model(stage, -(len(ordered) + 1))
            model.stages.append(new_stage)
            ordered.insert(position - 1, new_stage)
            self._renumber(ordered)

            logger.info(
                "template_stage_added",
                extra={
                    "template_id": str(template_id),
                    "stage_id": str(new_stage.id),
                    "position": position,
                },
            )
            return model.to_dto()

    def update_stage(
        self,
        template_id: UUID,
        stage_id: UUID,
        *,
        name: str | None = None,
        description: str | None = None,
        assigned_user_ids: Sequence[UUID] | None = None,
        assigned_roles: Sequence[str] | None = None,
    ) -> WorkflowTemplate:
        """Rename or reassign one stage; arguments left as None are untouched.

        Allowed while instances run: a new assignment decides who may act
        on instances currently waiting at the stage.
        """
        if name is not None and not name.strip():
            raise WorkflowValidationError("name", "stage name must not be blank")

        with persistence_guard("update_stage"):
            model = self._load(template_id)
            stage = self._stage_of(model, stage_id)
            changed = []
            if name is not None:
                stage.name = name
                changed.append("name")
            if description is not None:
                stage.description = description
                changed.append("description")
            if assigned_user_ids is not None:
                stage.assigned_user_ids = sorted(str(u) for u in assigned_user_ids)
                changed.append("assigned_user_ids")
            if assigned_roles is not None:
                stage.assigned_roles = sorted(set(assigned_roles))
                changed.append("assigned_roles")
            self.session.flush()

            logger.info(
                "template_stage_updated",
                extra={
                    "template_id": str(template_id),
                    "stage_id": str(stage_id),
                    "changed_fields": changed,
                },
            )
            return model.to_dto()

    def remove_stage(self, template_id: UUID, stage_id: UUID) -> WorkflowTemplate:
        """Delete one stage and close the gap in the positions."""
        with persistence_guard("remove_stage"):
            model = self._load(template_id)
            stage = self._stage_of(model, stage_id)
            if len(model.stages) == 1:
                raise WorkflowValidationError(
                    "stage_id", "a template needs at least one stage",
                )
            self._require_no_running(template_id, "stage list")

            model.stages.remove(stage)
            self.session.flush()
            self._renumber(sorted(model.stages, key=lambda s: s.position))

            logger.info(
                "template_stage_removed",
                extra={"template_id": str(template_id), "stage_id": str(stage_id)},
            )
            return model.to_dto()

    def clone_template(
        self,
        template_id: UUID,
        new_name: str,
        created_by: UUID,
    ) -> WorkflowTemplate:
        """Deep-copy a template and its stages.  The copy starts inactive."""
        if not new_name or not new_name.strip():
            raise WorkflowValidationError("name", "template name must not be blank")

        with LogContext.bind(actor_id=str(created_by)):
            with persistence_guard("clone_template"):
                source = self._load(template_id).to_dto()
                spec = TemplateSpec(
                    name=new_name,
                    description=source.description,
                    priority=source.priority,
                    is_active=False,
                    invoice_type_ids=tuple(source.invoice_type_ids),
                    contractor_type_ids=tuple(source.contractor_type_ids),
                    project_ids=tuple(source.project_ids),
                    stages=tuple(
                        StageSpec(
                            name=stage.name,
                            description=stage.description,
                            assigned_user_ids=tuple(stage.assigned_user_ids),
                            assigned_roles=tuple(stage.assigned_roles),
                        )
                        for stage in source.stages
                    ),
                )
                clone = self.create_template(spec, created_by)

                logger.info(
                    "template_cloned",
                    extra={
                        "source_template_id": str(template_id),
                        "template_id": str(clone.template_id),
                    },
                )
                return clone

    def _require_no_running(self, template_id: UUID, what: str) -> None:
        running = self.session.execute(
            select(func.count()).select_from(WorkflowInstanceModel).where(
                WorkflowInstanceModel.template_id == template_id,
                WorkflowInstanceModel.status == InstanceStatus.IN_PROGRESS.value,
            )
        ).scalar_one()
        if running:
            raise WorkflowValidationError(
                "template_id",
                f"{running} in-progress instance(s) still use this {what}",
            )

    def _renumber(self, stages: Sequence[WorkflowStageModel]) -> None:
        # Two passes keep (template_id, position) unique at every UPDATE
        for index, stage in enumerate(stages, start=1):
            stage.position = -index
        self.session.flush()
        for index, stage in enumerate(stages, start=1):
            stage.position = index
        self.session.flush()

    @staticmethod
    def _stage_of(model: WorkflowTemplateModel, stage_id: UUID) -> WorkflowStageModel:
        for stage in model.stages:
            if stage.id == stage_id:
                return stage
        raise WorkflowValidationError(
            "stage_id", f"{stage_id} is not a stage of template {model.id}",
        )

    def _load(self, template_id: UUID) -> WorkflowTemplateModel:
        model = self.session.get(WorkflowTemplateModel, template_id)
        if model is None:
            raise TemplateNotFoundError(str(template_id))
        return model
