"""
payhub_kernel.services.workflow_service -- Workflow instance lifecycle.

Responsibility:
    Starts approval workflows for payments, records approve/reject
    decisions, and cancels running workflows.  Keeps the payment's
    denormalized status fields in step with the instance.  Delegates
    template matching, authorization and next-state calculation to the
    pure workflow engine.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and the
    pure engines.

Invariants enforced:
    - Lifecycle: every status change is checked against
      INSTANCE_TRANSITIONS; terminal instances are never touched.
    - At most one in_progress instance per payment (service check plus
      the partial unique index).
    - Authorization uses the same predicate as the actionable listing.
    - Each decision appends exactly one progress entry; entries are never
      modified.
    - Decisions on one instance are serialized: the row is loaded with
      FOR UPDATE and written with an optimistic version check.

Failure modes:
    - WorkflowValidationError on a bad action or a missing reason.
    - InstanceNotFoundError, TemplateNotFoundError, PaymentNotFoundError.
    - InstanceNotActiveError, StageMismatchError, TemplateInactiveError,
      TemplateHasNoStagesError, PaymentAlreadyHasActiveInstanceError.
    - NotAuthorizedError when the user may not act on the current stage.
    - ConcurrentModificationError when another writer changed the
      instance first (nothing is flushed; the caller rolls back).
    - PersistenceUnavailableError when the database is unreachable.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from payhub_engines.workflow import (
    first_stage,
    is_actionable,
    plan_decision,
    select_template,
)
from payhub_kernel.db.guards import persistence_guard
from payhub_kernel.domain.clock import Clock
from payhub_kernel.domain.workflow import (
    INSTANCE_TRANSITIONS,
    PAYMENT_EFFECTS,
    DecisionAction,
    DecisionResult,
    IdentityProvider,
    InstanceStatus,
    InvoiceRef,
    ProgressAction,
    WorkflowInstance,
    WorkflowTemplate,
)
from payhub_kernel.exceptions import (
    ConcurrentModificationError,
    InstanceNotActiveError,
    InstanceNotFoundError,
    NotAuthorizedError,
    PaymentAlreadyHasActiveInstanceError,
    PaymentNotFoundError,
    StageMismatchError,
    TemplateHasNoStagesError,
    TemplateInactiveError,
    TemplateNotFoundError,
    WorkflowValidationError,
)
from payhub_kernel.logging_config import LogContext, get_logger
from payhub_kernel.models.payment import InvoiceModel, PaymentModel
from payhub_kernel.models.workflow import (
    ProgressEntryModel,
    WorkflowInstanceModel,
    WorkflowTemplateModel,
)
from payhub_kernel.selectors.identity import SqlIdentityProvider
from payhub_kernel.services.base import BaseService

logger = get_logger("services.workflow")


def _parse_action(action: DecisionAction | str) -> DecisionAction:
    try:
        return DecisionAction(action)
    except ValueError:
        raise WorkflowValidationError(
            "action", f"must be 'approve' or 'reject', got {action!r}",
        ) from None


def _require_reason(field: str, value: str | None, purpose: str) -> str:
    if value is None or not value.strip():
        raise WorkflowValidationError(field, f"a reason is required to {purpose}")
    return value


class WorkflowService(BaseService):
    """Writes for the workflow instance lifecycle."""

    def __init__(
        self,
        session: Session,
        identity: IdentityProvider | None = None,
        clock: Clock | None = None,
        require_template: bool = False,
    ) -> None:
        super().__init__(session, clock)
        self._identity = identity or SqlIdentityProvider(session)
        self._require_template = require_template

    # =========================================================================
    # Start
    # =========================================================================

    def start_workflow(
        self,
        payment_id: UUID,
        template_id: UUID,
        user_id: UUID,
    ) -> WorkflowInstance:
        """Start an approval workflow for a payment on a given template.

        The instance starts at the template's first stage with no
        progress.  The payment moves to processing / in_approval.
        """
        with LogContext.bind(actor_id=str(user_id), payment_id=str(payment_id)):
            with persistence_guard("start_workflow"):
                payment = self._load_payment(payment_id)
                template_model = self.session.get(WorkflowTemplateModel, template_id)
                if template_model is None:
                    raise TemplateNotFoundError(str(template_id))
                return self._start(payment, template_model.to_dto(), user_id)

    def start_for_payment(
        self,
        payment_id: UUID,
        user_id: UUID,
    ) -> WorkflowInstance | None:
        """Resolve the template for a payment's invoice and start on it.

        Returns None when no active template applies and templates are not
        required.
        """
        with LogContext.bind(actor_id=str(user_id), payment_id=str(payment_id)):
            with persistence_guard("start_for_payment"):
                payment = self._load_payment(payment_id)
                invoice = None
                if payment.invoice_id is not None:
                    invoice = self.session.get(InvoiceModel, payment.invoice_id)

                active = self.session.execute(
                    select(WorkflowTemplateModel).where(
                        WorkflowTemplateModel.is_active.is_(True),
                    )
                ).scalars().all()
                template = select_template(
                    [t.to_dto() for t in active],
                    invoice_type_id=invoice.invoice_type_id if invoice else None,
                    contractor_type_id=invoice.contractor_type_id if invoice else None,
                    project_id=invoice.project_id if invoice else None,
                )

                if template is None:
                    if self._require_template:
                        raise TemplateNotFoundError(
                            f"no active template matches payment {payment_id}"
                        )
                    logger.info(
                        "approval_not_required",
                        extra={
                            "invoice_id": str(payment.invoice_id)
                            if payment.invoice_id else None,
                        },
                    )
                    return None

                return self._start(payment, template, user_id)

    def _start(
        self,
        payment: PaymentModel,
        template: WorkflowTemplate,
        user_id: UUID,
    ) -> WorkflowInstance:
        if not template.is_active:
            raise TemplateInactiveError(str(template.template_id))
        stage = first_stage(template)
        if stage is None:
            raise TemplateHasNoStagesError(str(template.template_id))

        existing_id = self.session.execute(
            select(WorkflowInstanceModel.id).where(
                WorkflowInstanceModel.payment_id == payment.id,
                WorkflowInstanceModel.status == InstanceStatus.IN_PROGRESS.value,
            )
        ).scalar_one_or_none()
        if existing_id is not None:
            raise PaymentAlreadyHasActiveInstanceError(
                str(payment.id), str(existing_id),
            )

        # A failed flush expires every loaded attribute
        payment_id = payment.id
        now = self._clock.now()
        model = WorkflowInstanceModel(
            id=uuid4(),
            payment_id=payment_id,
            invoice_id=payment.invoice_id,
            template_id=template.template_id,
            current_stage_id=stage.stage_id,
            current_stage_position=stage.position,
            stages_total=len(template.stages),
            stages_completed=0,
            status=InstanceStatus.IN_PROGRESS.value,
            amount=payment.amount,
            started_at=now,
            started_by=user_id,
            progress_entries=[],
        )
        self.session.add(model)
        self._apply_payment_effect(payment, InstanceStatus.IN_PROGRESS, user_id, now)

        try:
            self.session.flush()
        except IntegrityError as exc:
            # Lost the race against a concurrent start for the same payment
            raise PaymentAlreadyHasActiveInstanceError(str(payment_id)) from exc

        logger.info(
            "workflow_started",
            extra={
                "instance_id": str(model.id),
                "template_id": str(template.template_id),
                "template_name": template.name,
                "stages_total": model.stages_total,
                "amount": str(payment.amount),
            },
        )
        return model.to_dto()

    # =========================================================================
    # Decide
    # =========================================================================

    def decide(
        self,
        instance_id: UUID,
        user_id: UUID,
        action: DecisionAction | str,
        note: str | None = None,
        expected_stage_id: UUID | None = None,
    ) -> DecisionResult:
        """Record an approve or reject decision on the current stage.

        ``expected_stage_id`` guards against acting on a stage the caller
        rendered earlier but which has since been decided.
        """
        decision = _parse_action(action)
        if decision == DecisionAction.REJECT:
            note = _require_reason("note", note, "reject")
        note = note or ""

        with LogContext.bind(actor_id=str(user_id), instance_id=str(instance_id)):
            with persistence_guard("decide"):
                model = self._load_instance_for_update(instance_id)
                instance = model.to_dto()
                self._require_active(instance)

                if (
                    expected_stage_id is not None
                    and expected_stage_id != instance.current_stage_id
                ):
                    raise StageMismatchError(
                        str(instance_id),
                        str(expected_stage_id),
                        str(instance.current_stage_id)
                        if instance.current_stage_id else None,
                    )

                template = self._load_template(instance.template_id)
                stage = template.stage_by_id(instance.current_stage_id)
                user = self._identity.resolve_user(user_id)
                invoice = self._load_invoice_ref(instance.invoice_id)

                if user is None or not is_actionable(instance, stage, user, invoice):
                    logger.warning(
                        "workflow_decision_denied",
                        extra={
                            "stage_id": str(instance.current_stage_id),
                            "decision": decision.value,
                        },
                    )
                    raise NotAuthorizedError(
                        str(instance_id),
                        str(user_id),
                        str(instance.current_stage_id),
                    )

                plan = plan_decision(instance, template, action=decision)
                self._require_transition(instance, plan.new_status)
                payment = self._load_payment(instance.payment_id)
                now = self._clock.now()

                # Nothing may flush before the version-checked flush below
                with self.session.no_autoflush:
                    self._append_progress(
                        model,
                        stage_id=stage.stage_id,
                        stage_name=stage.name,
                        user_id=user_id,
                        action=ProgressAction(decision.value),
                        comment=note,
                        now=now,
                    )
                    model.stages_completed = plan.stages_completed

                    if plan.next_stage is not None:
                        model.current_stage_id = plan.next_stage.stage_id
                        model.current_stage_position = plan.next_stage.position
                    else:
                        self._complete(model, payment, plan.new_status, user_id, now)

                self._flush_instance(instance_id)

                logger.info(
                    "workflow_decision_recorded",
                    extra={
                        "decision": decision.value,
                        "transition": plan.transition.value,
                        "from_stage_id": str(stage.stage_id),
                        "to_stage_id": str(plan.next_stage.stage_id)
                        if plan.next_stage else None,
                        "stages_completed": plan.stages_completed,
                        "stages_total": instance.stages_total,
                    },
                )

                return DecisionResult(
                    instance=model.to_dto(),
                    transition=plan.transition,
                    from_stage_id=stage.stage_id,
                    to_stage_id=plan.next_stage.stage_id if plan.next_stage else None,
                )

    # =========================================================================
    # Cancel
    # =========================================================================

    def cancel(
        self,
        instance_id: UUID,
        user_id: UUID,
        reason: str,
    ) -> WorkflowInstance:
        """Cancel a running workflow, recording the reason verbatim."""
        reason = _require_reason("reason", reason, "cancel")

        with LogContext.bind(actor_id=str(user_id), instance_id=str(instance_id)):
            with persistence_guard("cancel"):
                model = self._load_instance_for_update(instance_id)
                instance = model.to_dto()
                self._require_active(instance)

                self._require_transition(instance, InstanceStatus.CANCELLED)
                template = self._load_template(instance.template_id)
                stage = template.stage_by_id(instance.current_stage_id)
                payment = self._load_payment(instance.payment_id)
                now = self._clock.now()

                with self.session.no_autoflush:
                    self._append_progress(
                        model,
                        stage_id=instance.current_stage_id,
                        stage_name=stage.name if stage else "",
                        user_id=user_id,
                        action=ProgressAction.CANCEL,
                        comment=reason,
                        now=now,
                    )
                    self._complete(model, payment, InstanceStatus.CANCELLED, user_id, now)

                self._flush_instance(instance_id)

                logger.info(
                    "workflow_cancelled",
                    extra={
                        "stage_id": str(instance.current_stage_id),
                        "stages_completed": instance.stages_completed,
                    },
                )
                return model.to_dto()

    # =========================================================================
    # Internals
    # =========================================================================

    def _load_payment(self, payment_id: UUID) -> PaymentModel:
        payment = self.session.get(PaymentModel, payment_id)
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        return payment

    def _load_template(self, template_id: UUID) -> WorkflowTemplate:
        template = self.session.get(WorkflowTemplateModel, template_id)
        if template is None:
            raise TemplateNotFoundError(str(template_id))
        return template.to_dto()

    def _load_invoice_ref(self, invoice_id: UUID | None) -> InvoiceRef | None:
        if invoice_id is None:
            return None
        invoice = self.session.get(InvoiceModel, invoice_id)
        return invoice.to_ref() if invoice is not None else None

    def _load_instance_for_update(self, instance_id: UUID) -> WorkflowInstanceModel:
        """Load and lock the instance row, bypassing any cached state."""
        model = self.session.execute(
            select(WorkflowInstanceModel)
            .where(WorkflowInstanceModel.id == instance_id)
            .with_for_update(of=WorkflowInstanceModel)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise InstanceNotFoundError(str(instance_id))
        return model

    def _require_active(self, instance: WorkflowInstance) -> None:
        if not INSTANCE_TRANSITIONS.get(instance.status, frozenset()):
            raise InstanceNotActiveError(
                str(instance.instance_id), instance.status.value,
            )

    def _require_transition(
        self,
        instance: WorkflowInstance,
        target: InstanceStatus,
    ) -> None:
        if target not in INSTANCE_TRANSITIONS.get(instance.status, frozenset()):
            raise InstanceNotActiveError(
                str(instance.instance_id), instance.status.value,
            )

    def _append_progress(
        self,
        model: WorkflowInstanceModel,
        *,
        stage_id: UUID | None,
        stage_name: str,
        user_id: UUID,
        action: ProgressAction,
        comment: str,
        now: datetime,
    ) -> None:
        model.progress_entries.append(
            ProgressEntryModel(
                id=uuid4(),
                instance_id=model.id,
                sequence=len(model.progress_entries) + 1,
                stage_id=stage_id,
                stage_name=stage_name,
                user_id=user_id,
                action=action.value,
                comment=comment,
                recorded_at=now,
            )
        )

    def _complete(
        self,
        model: WorkflowInstanceModel,
        payment: PaymentModel,
        status: InstanceStatus,
        user_id: UUID,
        now: datetime,
    ) -> None:
        model.status = status.value
        model.current_stage_id = None
        model.current_stage_position = None
        model.completed_at = now
        model.completed_by = user_id
        self._apply_payment_effect(payment, status, user_id, now)

    def _apply_payment_effect(
        self,
        payment: PaymentModel,
        status: InstanceStatus,
        user_id: UUID,
        now: datetime,
    ) -> None:
        effect = PAYMENT_EFFECTS[status]
        payment.status = effect.status
        payment.workflow_status = effect.workflow_status
        if effect.stamps_approval:
            payment.approved_at = now
            payment.approved_by = user_id

    def _flush_instance(self, instance_id: UUID) -> None:
        try:
            self.session.flush()
        except (StaleDataError, IntegrityError) as exc:
            logger.warning(
                "workflow_concurrent_modification",
                extra={"error": type(exc).__name__},
            )
            raise ConcurrentModificationError(
                "WorkflowInstance", str(instance_id),
            ) from exc
