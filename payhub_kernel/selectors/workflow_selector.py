"""
Module: payhub_kernel.selectors.workflow_selector
Responsibility: Read-only access to workflow templates and instances: the
    actionable inbox for a user, the enriched approval history, the
    instance attached to a payment, template lookup and listing, and
    approval counters.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/, db/ and the pure engines.

Invariants enforced:
    - Visibility uses ``payhub_engines.workflow.is_actionable``, the same
      predicate that authorizes decisions.
    - A project-restricted user with no projects gets an empty inbox
      without a query being issued.
    - Page size never exceeds MAX_PAGE_SIZE.
    - History enrichment resolves all deciding users in ONE batch lookup.
    - The inbox query is narrowed in SQL to in-progress instances at a
      stage assigned to the user; progress entries are loaded for the
      returned page only.

Failure modes:
    - WorkflowValidationError on page < 1, unknown sort field or order.
    - InstanceNotFoundError from ``get_history``.
    - TemplateNotFoundError from ``get_template``.
    - PersistenceUnavailableError when the database is unreachable.
"""

from __future__ import annotations

from dataclasses import replace
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import lazyload

from payhub_engines.workflow import (
    clamp_page_size,
    is_actionable,
    is_assigned,
    paginate,
    select_template,
    template_applies,
)
from payhub_kernel.db.guards import persistence_guard
from payhub_kernel.domain.clock import Clock, SystemClock
from payhub_kernel.domain.workflow import (
    SORTABLE_INSTANCE_FIELDS,
    ApprovalStats,
    EnrichedProgressEntry,
    IdentityProvider,
    InstanceStatus,
    Page,
    PageRequest,
    ProgressAction,
    UserScope,
    WorkflowHistory,
    WorkflowInstance,
    WorkflowTemplate,
)
from payhub_kernel.exceptions import (
    InstanceNotFoundError,
    TemplateNotFoundError,
    WorkflowValidationError,
)
from payhub_kernel.logging_config import get_logger
from payhub_kernel.models.payment import InvoiceModel
from payhub_kernel.models.workflow import (
    ProgressEntryModel,
    WorkflowInstanceModel,
    WorkflowStageModel,
    WorkflowTemplateModel,
)
from payhub_kernel.selectors.base import BaseSelector
from payhub_kernel.selectors.identity import SqlIdentityProvider
from payhub_kernel.utils.cache import TTLCache

logger = get_logger("selectors.workflow")

MAX_PAGE_SIZE = 50

_SORT_COLUMNS = {
    "started_at": WorkflowInstanceModel.started_at,
    "amount": WorkflowInstanceModel.amount,
    "stages_completed": WorkflowInstanceModel.stages_completed,
    "stages_total": WorkflowInstanceModel.stages_total,
}


class WorkflowSelector(BaseSelector):
    """Read-side queries over workflow templates and instances."""

    def __init__(
        self,
        session,
        identity: IdentityProvider | None = None,
        clock: Clock | None = None,
        max_page_size: int = MAX_PAGE_SIZE,
    ):
        super().__init__(session)
        self._identity = identity or SqlIdentityProvider(session)
        self._clock = clock or SystemClock()
        self._max_page_size = min(max_page_size, MAX_PAGE_SIZE)

    # =========================================================================
    # Templates
    # =========================================================================

    def select_template(
        self,
        invoice_type_id: int | None = None,
        contractor_type_id: int | None = None,
        project_id: int | None = None,
    ) -> WorkflowTemplate | None:
        """Highest-priority active template applicable to the given ids."""
        with persistence_guard("select_template"):
            templates = self._active_templates()
        return select_template(
            templates,
            invoice_type_id=invoice_type_id,
            contractor_type_id=contractor_type_id,
            project_id=project_id,
        )

    def list_available_templates(
        self,
        invoice_type_id: int | None = None,
    ) -> list[WorkflowTemplate]:
        """Active templates usable for an invoice type, ordered by name."""
        with persistence_guard("list_available_templates"):
            templates = self._active_templates()
        return sorted(
            (t for t in templates if template_applies(t, invoice_type_id=invoice_type_id)),
            key=lambda t: (t.name, str(t.template_id)),
        )

    def get_template(self, template_id: UUID) -> WorkflowTemplate:
        """One template with its stages, active or not."""
        with persistence_guard("get_template"):
            model = self.session.get(WorkflowTemplateModel, template_id)
            if model is None:
                raise TemplateNotFoundError(str(template_id))
            return model.to_dto()

    def list_templates(self) -> list[WorkflowTemplate]:
        """Every template, active or not, ordered by name."""
        with persistence_guard("list_templates"):
            rows = self.session.execute(
                select(WorkflowTemplateModel).order_by(
                    WorkflowTemplateModel.name, WorkflowTemplateModel.id,
                )
            ).scalars().all()
            return [t.to_dto() for t in rows]

    def _active_templates(self) -> list[WorkflowTemplate]:
        rows = self.session.execute(
            select(WorkflowTemplateModel).where(WorkflowTemplateModel.is_active.is_(True))
        ).scalars().all()
        return [t.to_dto() for t in rows]

    # =========================================================================
    # Actionable inbox
    # =========================================================================

    def list_actionable(
        self,
        user: UserScope,
        page: PageRequest | None = None,
    ) -> Page[WorkflowInstance]:
        """In-progress instances the user may decide right now."""
        request = self._normalize(page or PageRequest())

        if user.view_own_project_only and not user.project_ids:
            logger.info(
                "actionable_scope_empty",
                extra={"user_id": str(user.user_id)},
            )
            return Page(items=(), total=0, page=request.page, limit=request.limit)

        with persistence_guard("list_actionable"):
            visible = self._actionable_instances(user, request)
            items, total = paginate(visible, request.page, request.limit)
            items = self._with_progress(items)
        return Page(items=items, total=total, page=request.page, limit=request.limit)

    def list_actionable_for(
        self,
        user_id: UUID,
        page: PageRequest | None = None,
    ) -> Page[WorkflowInstance]:
        """Resolve the user's role and scope, then list their inbox."""
        request = self._normalize(page or PageRequest())
        with persistence_guard("resolve_user"):
            user = self._identity.resolve_user(user_id)
        if user is None:
            return Page(items=(), total=0, page=request.page, limit=request.limit)
        return self.list_actionable(user, request)

    def _normalize(self, page: PageRequest) -> PageRequest:
        if page.page < 1:
            raise WorkflowValidationError("page", f"must be >= 1, got {page.page}")
        if page.sort_by not in SORTABLE_INSTANCE_FIELDS:
            raise WorkflowValidationError(
                "sort_by",
                f"unknown field {page.sort_by!r}; "
                f"expected one of {sorted(SORTABLE_INSTANCE_FIELDS)}",
            )
        if page.sort_order not in ("asc", "desc"):
            raise WorkflowValidationError(
                "sort_order", f"must be 'asc' or 'desc', got {page.sort_order!r}",
            )
        return PageRequest(
            page=page.page,
            limit=clamp_page_size(page.limit, self._max_page_size),
            sort_by=page.sort_by,
            sort_order=page.sort_order,
        )

    def _actionable_instances(
        self,
        user: UserScope,
        request: PageRequest,
    ) -> list[WorkflowInstance]:
        """Filter and sort in SQL, then apply the predicate.

        Only instances sitting at a stage assigned to the user are fetched,
        with their invoice in the same query and without progress entries.
        Returned DTOs have an empty ``approval_progress``.
        """
        stages = {
            s.id: s.to_dto()
            for s in self.session.execute(select(WorkflowStageModel)).scalars()
        }
        stage_ids = [
            stage_id for stage_id, stage in stages.items()
            if not stage.is_unassigned
            and is_assigned(stage, user.user_id, user.role_code)
        ]
        if not stage_ids:
            return []

        column = _SORT_COLUMNS[request.sort_by]
        ordering = column.desc() if request.sort_order == "desc" else column.asc()
        query = (
            select(WorkflowInstanceModel, InvoiceModel)
            .outerjoin(InvoiceModel, InvoiceModel.id == WorkflowInstanceModel.invoice_id)
            .options(lazyload(WorkflowInstanceModel.progress_entries))
            .where(
                WorkflowInstanceModel.status == InstanceStatus.IN_PROGRESS.value,
                WorkflowInstanceModel.current_stage_id.in_(stage_ids),
            )
            .order_by(ordering, WorkflowInstanceModel.id)
        )
        if user.view_own_project_only:
            query = query.where(
                or_(
                    WorkflowInstanceModel.invoice_id.is_(None),
                    InvoiceModel.project_id.in_(sorted(user.project_ids)),
                )
            )

        visible = []
        for model, invoice_model in self.session.execute(query).all():
            instance = model.to_dto(include_progress=False)
            invoice = invoice_model.to_ref() if invoice_model is not None else None
            stage = stages.get(instance.current_stage_id)
            if is_actionable(instance, stage, user, invoice):
                visible.append(instance)
        return visible

    def _with_progress(
        self,
        instances: tuple[WorkflowInstance, ...],
    ) -> tuple[WorkflowInstance, ...]:
        """Attach progress entries to one page of instances in one query."""
        if not instances:
            return instances
        rows = self.session.execute(
            select(ProgressEntryModel)
            .where(ProgressEntryModel.instance_id.in_([i.instance_id for i in instances]))
            .order_by(ProgressEntryModel.instance_id, ProgressEntryModel.sequence)
        ).scalars()
        progress: dict[UUID, list] = {}
        for row in rows:
            progress.setdefault(row.instance_id, []).append(row.to_dto())
        return tuple(
            replace(i, approval_progress=tuple(progress.get(i.instance_id, ())))
            for i in instances
        )

    # =========================================================================
    # History
    # =========================================================================

    def get_history(self, instance_id: UUID) -> WorkflowHistory:
        """Instance, its template's stages, and the progress log with user names."""
        with persistence_guard("get_history"):
            model = self.session.get(WorkflowInstanceModel, instance_id)
            if model is None:
                raise InstanceNotFoundError(str(instance_id))
            instance = model.to_dto()
            template = self.session.get(
                WorkflowTemplateModel, instance.template_id,
            ).to_dto()

            user_ids = frozenset(e.user_id for e in instance.approval_progress)
            profiles = self._identity.describe_users(user_ids) if user_ids else {}

        return WorkflowHistory(
            instance=instance,
            template_name=template.name,
            stages=template.stages,
            approval_progress=tuple(
                EnrichedProgressEntry(entry=e, user=profiles.get(e.user_id))
                for e in instance.approval_progress
            ),
        )

    def get_instance_for_payment(self, payment_id: UUID) -> WorkflowInstance | None:
        """Most recently started instance for a payment, any status."""
        with persistence_guard("get_instance_for_payment"):
            model = self.session.execute(
                select(WorkflowInstanceModel)
                .where(WorkflowInstanceModel.payment_id == payment_id)
                .order_by(
                    WorkflowInstanceModel.started_at.desc(),
                    WorkflowInstanceModel.id.desc(),
                )
                .limit(1)
            ).scalar_one_or_none()
            return model.to_dto() if model is not None else None

    # =========================================================================
    # Statistics
    # =========================================================================

    def approval_stats(
        self,
        user: UserScope,
        cache: TTLCache | None = None,
    ) -> ApprovalStats:
        """Pending, completed-today and my-approvals counters for a user.

        When ``cache`` is given the result is memoised there under a key
        that includes the user's role and the current day.
        """
        today = self._clock.today_start()
        if cache is None:
            return self._compute_stats(user, today)
        key = (
            "approval_stats",
            user.user_id,
            user.role_code,
            user.view_own_project_only,
            user.project_ids,
            today,
        )
        return cache.get_or_compute(key, lambda: self._compute_stats(user, today))

    def _compute_stats(self, user: UserScope, today) -> ApprovalStats:
        with persistence_guard("approval_stats"):
            if user.view_own_project_only and not user.project_ids:
                pending = 0
            else:
                pending = len(self._actionable_instances(user, PageRequest()))

            completed_today = self.session.execute(
                select(func.count()).select_from(WorkflowInstanceModel).where(
                    WorkflowInstanceModel.status == InstanceStatus.APPROVED.value,
                    WorkflowInstanceModel.completed_at >= today,
                )
            ).scalar_one()

            my_approvals = self.session.execute(
                select(func.count()).select_from(ProgressEntryModel).where(
                    ProgressEntryModel.user_id == user.user_id,
                    ProgressEntryModel.action == ProgressAction.APPROVE.value,
                )
            ).scalar_one()

        logger.debug(
            "approval_stats_computed",
            extra={"user_id": str(user.user_id), "pending": pending},
        )
        return ApprovalStats(
            pending=pending,
            completed_today=completed_today,
            my_approvals=my_approvals,
        )
