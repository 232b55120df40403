"""
Hypothesis property tests for the pure workflow engine.

Properties:
- select_template picks an active, applicable template of maximal priority
  and is independent of input order.
- Any sequence of approve/reject decisions keeps the instance snapshot
  consistent and takes at most stages_total decisions.
- Paging partitions a result set exactly.
- A restricted user with no projects never sees anything.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from payhub_engines.workflow import (
    first_stage,
    is_actionable,
    paginate,
    plan_decision,
    select_template,
    template_applies,
)
from payhub_kernel.domain.workflow import (
    DecisionAction,
    InstanceStatus,
    InvoiceRef,
    ProgressAction,
    ProgressEntry,
    StageDefinition,
    UserScope,
    WorkflowInstance,
    WorkflowTemplate,
    instance_invariant_violations,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)

small_ids = st.frozensets(st.integers(min_value=1, max_value=5), max_size=3)


@st.composite
def templates(draw):
    number = draw(st.integers(min_value=1, max_value=2**32))
    template_id = UUID(int=number << 16)
    stage_count = draw(st.integers(min_value=1, max_value=6))
    stages = tuple(
        StageDefinition(
            stage_id=UUID(int=(number << 16) + p),
            template_id=template_id,
            position=p,
            name=f"Stage {p}",
            assigned_roles=frozenset({"finance"}),
        )
        for p in range(1, stage_count + 1)
    )
    return WorkflowTemplate(
        template_id=template_id,
        name="T",
        priority=draw(st.integers(min_value=-3, max_value=3)),
        is_active=draw(st.booleans()),
        invoice_type_ids=draw(small_ids),
        contractor_type_ids=draw(small_ids),
        project_ids=draw(small_ids),
        stages=stages,
        created_at=T0 + timedelta(days=draw(st.integers(min_value=0, max_value=3))),
    )


optional_dimension = st.one_of(st.none(), st.integers(min_value=1, max_value=5))


class TestTemplateSelectionProperties:

    @given(
        pool=st.lists(templates(), max_size=8, unique_by=lambda t: t.template_id),
        invoice_type_id=optional_dimension,
        contractor_type_id=optional_dimension,
        project_id=optional_dimension,
        data=st.data(),
    )
    @settings(max_examples=150)
    def test_winner_is_maximal_and_order_independent(
        self, pool, invoice_type_id, contractor_type_id, project_id, data,
    ):
        dims = dict(
            invoice_type_id=invoice_type_id,
            contractor_type_id=contractor_type_id,
            project_id=project_id,
        )
        winner = select_template(pool, **dims)
        eligible = [t for t in pool if t.is_active and template_applies(t, **dims)]

        if not eligible:
            assert winner is None
            return
        assert winner in eligible
        assert winner.priority == max(t.priority for t in eligible)

        shuffled = data.draw(st.permutations(pool))
        assert select_template(shuffled, **dims) == winner


class TestDecisionWalkProperties:

    @given(template=templates(), decisions=st.lists(st.booleans(), min_size=1, max_size=10))
    @settings(max_examples=200)
    def test_random_walk_stays_consistent(self, template, decisions):
        stage = first_stage(template)
        instance = WorkflowInstance(
            instance_id=uuid4(),
            payment_id=uuid4(),
            template_id=template.template_id,
            status=InstanceStatus.IN_PROGRESS,
            stages_total=len(template.stages),
            stages_completed=0,
            amount=Decimal("10"),
            started_by=uuid4(),
            current_stage_id=stage.stage_id,
            current_stage_position=stage.position,
            started_at=T0,
        )

        steps = 0
        for approve in decisions:
            if instance.is_terminal:
                break
            action = DecisionAction.APPROVE if approve else DecisionAction.REJECT
            plan = plan_decision(instance, template, action=action)
            entry = ProgressEntry(
                entry_id=uuid4(),
                instance_id=instance.instance_id,
                sequence=len(instance.approval_progress) + 1,
                stage_id=instance.current_stage_id,
                stage_name="",
                user_id=uuid4(),
                action=ProgressAction(action.value),
            )
            terminal = plan.next_stage is None
            instance = replace(
                instance,
                status=plan.new_status,
                stages_completed=plan.stages_completed,
                current_stage_id=None if terminal else plan.next_stage.stage_id,
                current_stage_position=None if terminal else plan.next_stage.position,
                completed_at=T0 if terminal else None,
                approval_progress=instance.approval_progress + (entry,),
            )
            steps += 1
            assert instance_invariant_violations(instance) == []

        assert steps <= instance.stages_total
        if instance.status == InstanceStatus.APPROVED:
            assert instance.stages_completed == instance.stages_total
        if all(decisions[:instance.stages_total]) and len(decisions) >= instance.stages_total:
            assert instance.status == InstanceStatus.APPROVED


class TestVisibilityProperties:

    @given(
        project_id=st.one_of(st.none(), st.integers(min_value=1, max_value=5)),
        has_invoice=st.booleans(),
        role=st.sampled_from(["finance", "director", None]),
    )
    def test_restricted_user_without_projects_sees_nothing(self, project_id, has_invoice, role):
        stage = StageDefinition(
            stage_id=uuid4(), template_id=uuid4(), position=1, name="S",
            assigned_roles=frozenset({"finance", "director"}),
        )
        invoice_id = uuid4() if has_invoice else None
        instance = WorkflowInstance(
            instance_id=uuid4(),
            payment_id=uuid4(),
            template_id=stage.template_id,
            status=InstanceStatus.IN_PROGRESS,
            stages_total=1,
            stages_completed=0,
            amount=Decimal("1"),
            started_by=uuid4(),
            invoice_id=invoice_id,
            current_stage_id=stage.stage_id,
            current_stage_position=1,
        )
        invoice = InvoiceRef(invoice_id, project_id=project_id) if has_invoice else None
        user = UserScope(user_id=uuid4(), role_code=role, view_own_project_only=True)
        assert not is_actionable(instance, stage, user, invoice)


class TestPagingProperties:

    @given(
        items=st.lists(st.integers(), max_size=120),
        limit=st.integers(min_value=1, max_value=50),
    )
    def test_pages_partition_items(self, items, limit):
        collected = []
        page = 1
        while True:
            chunk, total = paginate(items, page, limit)
            assert total == len(items)
            assert len(chunk) <= limit
            if not chunk:
                break
            collected.extend(chunk)
            page += 1
        assert collected == items
