"""
ORM model tests for the workflow persistence layer.

Tests: WorkflowTemplateModel, WorkflowInstanceModel, ProgressEntryModel --
DTO round-trips, the one-active-instance index, optimistic versioning and
progress entry immutability.

These are ORM-level tests only.  Service-layer behaviour is tested elsewhere.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from payhub_kernel.domain.workflow import InstanceStatus, ProgressAction
from payhub_kernel.exceptions import ImmutabilityViolationError
from payhub_kernel.models.workflow import (
    ProgressEntryModel,
    WorkflowInstanceModel,
    WorkflowStageModel,
    WorkflowTemplateModel,
)
from tests.conftest import role_stage

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_instance_model(payment, template, *, status="in_progress", **kwargs):
    stage = template.stages[0]
    terminal = status != "in_progress"
    defaults = dict(
        id=uuid4(),
        payment_id=payment.id,
        template_id=template.template_id,
        current_stage_id=None if terminal else stage.stage_id,
        current_stage_position=None if terminal else stage.position,
        stages_total=len(template.stages),
        stages_completed=0,
        status=status,
        amount=payment.amount,
        started_at=NOW,
        started_by=uuid4(),
        completed_at=NOW if terminal else None,
    )
    defaults.update(kwargs)
    return WorkflowInstanceModel(**defaults)


@pytest.fixture
def started(workflow_service, make_template, make_payment, make_user):
    """A running two-stage instance with one approval recorded."""
    template = make_template(
        stages=(role_stage("Manager", "manager"), role_stage("Finance", "finance")),
    )
    payment = make_payment()
    manager = make_user("manager")
    instance = workflow_service.start_workflow(payment.id, template.template_id, manager.id)
    workflow_service.decide(instance.instance_id, manager.id, "approve")
    return instance.instance_id


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


class TestTemplateModel:

    def test_stages_load_in_position_order(self, session, make_template):
        template = make_template(
            stages=(role_stage("A", "x"), role_stage("B", "y"), role_stage("C", "z")),
        )
        session.expire_all()
        stages = (
            session.query(WorkflowStageModel)
            .filter_by(template_id=template.template_id)
            .order_by(WorkflowStageModel.position)
            .all()
        )
        assert [s.name for s in stages] == ["A", "B", "C"]
        assert [s.position for s in stages] == [1, 2, 3]

    def test_duplicate_stage_position_rejected(self, session, make_template):
        template = make_template()
        session.add(
            WorkflowStageModel(
                id=uuid4(),
                template_id=template.template_id,
                position=1,
                name="Duplicate",
            )
        )
        with pytest.raises(IntegrityError):
            session.flush()

    def test_dto_round_trip(self, session, make_template):
        user_id = uuid4()
        template = make_template(
            stages=(role_stage("Only", "finance", users=(user_id,)),),
            priority=7,
            invoice_type_ids=(2, 1, 2),
        )
        session.expire_all()
        dto = session.get(WorkflowTemplateModel, template.template_id).to_dto()
        assert dto.priority == 7
        assert dto.invoice_type_ids == frozenset({1, 2})
        assert dto.stages[0].assigned_user_ids == frozenset({user_id})
        assert dto.stages[0].assigned_roles == frozenset({"finance"})
        assert dto.created_at.tzinfo is not None


# ---------------------------------------------------------------------------
# Instances
# ---------------------------------------------------------------------------


class TestInstanceModel:

    def test_second_in_progress_instance_rejected(self, session, make_template, make_payment):
        template = make_template()
        payment = make_payment()
        session.add(_make_instance_model(payment, template))
        session.flush()

        session.add(_make_instance_model(payment, template))
        with pytest.raises(IntegrityError):
            session.flush()

    def test_terminal_instances_do_not_block_a_new_one(
        self, session, make_template, make_payment,
    ):
        template = make_template()
        payment = make_payment()
        session.add(_make_instance_model(payment, template, status="rejected"))
        session.add(_make_instance_model(payment, template, status="cancelled"))
        session.add(_make_instance_model(payment, template))
        session.flush()

        count = session.query(WorkflowInstanceModel).filter_by(payment_id=payment.id).count()
        assert count == 3

    def test_invalid_status_rejected(self, session, make_template, make_payment):
        session.add(
            _make_instance_model(make_payment(), make_template(), status="paused")
        )
        with pytest.raises(IntegrityError):
            session.flush()

    def test_version_starts_at_one_and_increments(self, session, started):
        model = session.get(WorkflowInstanceModel, started)
        # start inserted version 1, the approval bumped it
        assert model.version == 2
        assert model.to_dto().version == 2

    def test_stale_update_detected(self, session, started):
        model = session.get(WorkflowInstanceModel, started)
        session.execute(
            update(WorkflowInstanceModel.__table__)
            .where(WorkflowInstanceModel.__table__.c.id == started)
            .values(version=model.version + 1)
        )
        model.stages_completed = 0
        with pytest.raises(StaleDataError):
            session.flush()

    def test_dto_carries_progress(self, session, started):
        session.expire_all()
        dto = session.get(WorkflowInstanceModel, started).to_dto()
        assert dto.status == InstanceStatus.IN_PROGRESS
        assert dto.stages_completed == 1
        assert dto.current_stage_position == 2
        assert [e.action for e in dto.approval_progress] == [ProgressAction.APPROVE]
        assert dto.started_at.tzinfo is not None


# ---------------------------------------------------------------------------
# Progress entries
# ---------------------------------------------------------------------------


class TestProgressEntryImmutability:

    def test_update_blocked(self, session, started):
        entry = session.query(ProgressEntryModel).filter_by(instance_id=started).one()
        entry.comment = "rewritten"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, session, started):
        entry = session.query(ProgressEntryModel).filter_by(instance_id=started).one()
        session.delete(entry)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_duplicate_sequence_rejected(self, session, started):
        entry = session.query(ProgressEntryModel).filter_by(instance_id=started).one()
        session.add(
            ProgressEntryModel(
                id=uuid4(),
                instance_id=started,
                sequence=entry.sequence,
                stage_id=entry.stage_id,
                stage_name=entry.stage_name,
                user_id=uuid4(),
                action="approve",
                comment="",
                recorded_at=NOW,
            )
        )
        with pytest.raises(IntegrityError):
            session.flush()

    def test_unknown_action_rejected(self, session, started):
        session.add(
            ProgressEntryModel(
                id=uuid4(),
                instance_id=started,
                sequence=99,
                stage_id=None,
                stage_name="",
                user_id=uuid4(),
                action="escalate",
                comment="",
                recorded_at=NOW,
            )
        )
        with pytest.raises(IntegrityError):
            session.flush()
