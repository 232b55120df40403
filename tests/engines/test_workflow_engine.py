"""
Tests for the pure approval workflow engine.

Tests cover:
- select_template: active filter, wildcard matching, priority, tie-breaks
- next_stage: gaps in positions
- is_actionable: assignment, project scope, stale stage
- plan_decision: advance, final approval, rejection, terminal refusal
- paginate / clamp_page_size
- PAYHUB_ENGINE_TRACE emission
"""

import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from payhub_engines.workflow import (
    clamp_page_size,
    first_stage,
    is_actionable,
    is_assigned,
    is_within_project_scope,
    next_stage,
    paginate,
    plan_decision,
    select_template,
    template_applies,
)
from payhub_kernel.domain.workflow import (
    DecisionAction,
    InstanceStatus,
    InvoiceRef,
    StageDefinition,
    StageTransition,
    UserScope,
    WorkflowInstance,
    WorkflowTemplate,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


# =========================================================================
# Factory helpers
# =========================================================================


def make_template(
    priority: int = 0,
    positions: tuple[int, ...] = (1, 2, 3),
    roles: tuple[str, ...] = ("finance",),
    created_at: datetime | None = T0,
    template_id: UUID | None = None,
    **kwargs,
) -> WorkflowTemplate:
    template_id = template_id or uuid4()
    stages = tuple(
        StageDefinition(
            stage_id=uuid4(),
            template_id=template_id,
            position=p,
            name=f"Stage {p}",
            assigned_roles=frozenset(roles),
        )
        for p in positions
    )
    return WorkflowTemplate(
        template_id=template_id,
        name=f"Template p{priority}",
        priority=priority,
        stages=stages,
        created_at=created_at,
        **kwargs,
    )


def start(template: WorkflowTemplate, invoice_id: UUID | None = None) -> WorkflowInstance:
    stage = first_stage(template)
    return WorkflowInstance(
        instance_id=uuid4(),
        payment_id=uuid4(),
        template_id=template.template_id,
        status=InstanceStatus.IN_PROGRESS,
        stages_total=len(template.stages),
        stages_completed=0,
        amount=Decimal("100"),
        started_by=uuid4(),
        invoice_id=invoice_id,
        current_stage_id=stage.stage_id,
        current_stage_position=stage.position,
        started_at=T0,
    )


def advance(instance: WorkflowInstance, template: WorkflowTemplate) -> WorkflowInstance:
    """Apply one approval plan to a snapshot the way the service does."""
    plan = plan_decision(instance, template, action=DecisionAction.APPROVE)
    if plan.next_stage is None:
        return replace(
            instance,
            status=plan.new_status,
            stages_completed=plan.stages_completed,
            current_stage_id=None,
            current_stage_position=None,
            completed_at=T0,
        )
    return replace(
        instance,
        stages_completed=plan.stages_completed,
        current_stage_id=plan.next_stage.stage_id,
        current_stage_position=plan.next_stage.position,
    )


# =========================================================================
# 1. Template selection
# =========================================================================


class TestTemplateSelection:

    def test_empty_rules_are_wildcards(self):
        template = make_template()
        assert template_applies(template, invoice_type_id=7, contractor_type_id=3, project_id=9)

    def test_listed_dimension_must_match(self):
        template = make_template(invoice_type_ids=frozenset({1, 2}))
        assert template_applies(template, invoice_type_id=2)
        assert not template_applies(template, invoice_type_id=3)

    def test_unknown_dimension_matches_anything(self):
        template = make_template(project_ids=frozenset({10}))
        assert template_applies(template, project_id=None)

    def test_highest_priority_wins(self):
        low = make_template(priority=5)
        high = make_template(priority=10)
        assert select_template([low, high]) == high
        assert select_template([high, low]) == high

    def test_inactive_templates_are_ignored(self):
        active = make_template(priority=1)
        inactive = make_template(priority=99, is_active=False)
        assert select_template([active, inactive]) == active

    def test_non_applicable_templates_are_ignored(self):
        generic = make_template(priority=0)
        specific = make_template(priority=10, invoice_type_ids=frozenset({1}))
        assert select_template([generic, specific], invoice_type_id=2) == generic
        assert select_template([generic, specific], invoice_type_id=1) == specific

    def test_no_candidates_returns_none(self):
        assert select_template([]) is None
        assert select_template([make_template(is_active=False)]) is None

    def test_equal_priority_prefers_newest(self):
        older = make_template(priority=3, created_at=T0)
        newer = make_template(priority=3, created_at=T0 + timedelta(days=1))
        assert select_template([newer, older]) == newer
        assert select_template([older, newer]) == newer

    def test_full_tie_is_broken_by_id(self):
        a = make_template(template_id=UUID(int=1))
        b = make_template(template_id=UUID(int=2))
        assert select_template([a, b]) == b
        assert select_template([b, a]) == b


# =========================================================================
# 2. Stage ordering
# =========================================================================


class TestStageOrdering:

    def test_next_stage_skips_position_gaps(self):
        template = make_template(positions=(1, 4, 9))
        assert next_stage(template, 1).position == 4
        assert next_stage(template, 4).position == 9
        assert next_stage(template, 9) is None

    def test_first_stage_of_empty_template(self):
        assert first_stage(make_template(positions=())) is None


# =========================================================================
# 3. Visibility
# =========================================================================


class TestVisibility:

    def test_assignment_by_user_or_role(self):
        user_id = uuid4()
        stage = StageDefinition(
            stage_id=uuid4(), template_id=uuid4(), position=1, name="S",
            assigned_user_ids=frozenset({user_id}),
            assigned_roles=frozenset({"director"}),
        )
        assert is_assigned(stage, user_id, None)
        assert is_assigned(stage, uuid4(), "director")
        assert not is_assigned(stage, uuid4(), "finance")
        assert not is_assigned(stage, uuid4(), None)

    def test_unassigned_stage_is_actionable_by_nobody(self):
        template = make_template(roles=())
        instance = start(template)
        user = UserScope(user_id=uuid4(), role_code="admin")
        assert not is_actionable(instance, template.stages[0], user)

    def test_unrestricted_user_ignores_projects(self):
        user = UserScope(user_id=uuid4(), role_code="finance")
        assert is_within_project_scope(user, uuid4(), None)

    def test_restricted_user_without_projects_sees_nothing(self):
        user = UserScope(user_id=uuid4(), view_own_project_only=True)
        assert not is_within_project_scope(user, None, None)

    def test_restricted_user_project_membership(self):
        invoice_id = uuid4()
        user = UserScope(
            user_id=uuid4(), view_own_project_only=True, project_ids=frozenset({10}),
        )
        assert is_within_project_scope(user, invoice_id, InvoiceRef(invoice_id, project_id=10))
        assert not is_within_project_scope(user, invoice_id, InvoiceRef(invoice_id, project_id=20))

    def test_restricted_user_and_unresolvable_invoice(self):
        invoice_id = uuid4()
        user = UserScope(
            user_id=uuid4(), view_own_project_only=True, project_ids=frozenset({10}),
        )
        assert not is_within_project_scope(user, invoice_id, None)
        assert not is_within_project_scope(user, invoice_id, InvoiceRef(invoice_id))

    def test_instance_without_invoice_is_exempt_from_project_scope(self):
        user = UserScope(
            user_id=uuid4(), view_own_project_only=True, project_ids=frozenset({10}),
        )
        assert is_within_project_scope(user, None, None)

    def test_stale_stage_is_not_actionable(self):
        template = make_template()
        instance = start(template)
        user = UserScope(user_id=uuid4(), role_code="finance")
        assert is_actionable(instance, template.stages[0], user)
        assert not is_actionable(instance, template.stages[1], user)
        assert not is_actionable(instance, None, user)

    def test_terminal_instance_is_not_actionable(self):
        template = make_template(positions=(1,))
        done = advance(start(template), template)
        user = UserScope(user_id=uuid4(), role_code="finance")
        assert not is_actionable(done, template.stages[0], user)


# =========================================================================
# 4. Decision planning
# =========================================================================


class TestPlanDecision:

    def test_approve_advances_to_next_stage(self):
        template = make_template()
        plan = plan_decision(start(template), template, action=DecisionAction.APPROVE)
        assert plan.transition == StageTransition.ADVANCED
        assert plan.new_status == InstanceStatus.IN_PROGRESS
        assert plan.stages_completed == 1
        assert plan.next_stage == template.stages[1]

    def test_approve_on_last_stage_approves_instance(self):
        template = make_template(positions=(1,))
        plan = plan_decision(start(template), template, action=DecisionAction.APPROVE)
        assert plan.transition == StageTransition.APPROVED
        assert plan.new_status == InstanceStatus.APPROVED
        assert plan.stages_completed == 1
        assert plan.next_stage is None

    def test_reject_keeps_completed_count(self):
        template = make_template()
        instance = advance(start(template), template)
        plan = plan_decision(instance, template, action=DecisionAction.REJECT)
        assert plan.transition == StageTransition.REJECTED
        assert plan.new_status == InstanceStatus.REJECTED
        assert plan.stages_completed == 1
        assert plan.next_stage is None

    def test_full_walk_never_exceeds_total(self):
        template = make_template(positions=(2, 5, 7, 11))
        instance = start(template)
        while not instance.is_terminal:
            instance = advance(instance, template)
            assert instance.stages_completed <= instance.stages_total
        assert instance.status == InstanceStatus.APPROVED
        assert instance.stages_completed == 4

    def test_terminal_instance_is_refused(self):
        template = make_template(positions=(1,))
        done = advance(start(template), template)
        with pytest.raises(ValueError, match="approved"):
            plan_decision(done, template, action=DecisionAction.REJECT)

    def test_stage_outside_template_is_refused(self):
        template = make_template()
        other = make_template()
        with pytest.raises(ValueError, match="not part of"):
            plan_decision(start(other), template, action=DecisionAction.APPROVE)


# =========================================================================
# 5. Paging
# =========================================================================


class TestPaging:

    @pytest.mark.parametrize(
        "limit, expected",
        [(0, 1), (-5, 1), (1, 1), (20, 20), (50, 50), (51, 50), (1000, 50)],
    )
    def test_clamp_page_size(self, limit, expected):
        assert clamp_page_size(limit, 50) == expected

    def test_paginate_slices_and_counts(self):
        items = list(range(45))
        page, total = paginate(items, 3, 20)
        assert page == tuple(range(40, 45))
        assert total == 45

    def test_page_past_end_is_empty(self):
        page, total = paginate([1, 2, 3], 5, 2)
        assert page == ()
        assert total == 3

    def test_invalid_page_or_limit(self):
        with pytest.raises(ValueError):
            paginate([1], 0, 10)
        with pytest.raises(ValueError):
            paginate([1], 1, 0)


# =========================================================================
# 6. Tracing
# =========================================================================


class TestEngineTrace:

    def test_select_template_emits_trace(self, captured_logs):
        select_template([make_template()], invoice_type_id=1)
        traces = [r for r in captured_logs() if r["message"] == "PAYHUB_ENGINE_TRACE"]
        assert len(traces) == 1
        assert traces[0]["engine_name"] == "workflow.select_template"
        assert traces[0]["level"] == "DEBUG"
        assert traces[0]["duration_ms"] >= 0

    def test_no_trace_above_debug(self, captured_logs):
        logging.getLogger("payhub_kernel").setLevel(logging.INFO)
        template = make_template(positions=(1,))
        plan_decision(start(template), template, action=DecisionAction.APPROVE)
        assert not [r for r in captured_logs() if r["message"] == "PAYHUB_ENGINE_TRACE"]
