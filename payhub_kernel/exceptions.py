"""
Typed Exception Hierarchy for the PayHub workflow engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval screens must render an actionable message for every failure.
Parsing message strings is fragile, so:
  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        service.decide(instance_id, user_id, "approve")
    except Exception as e:
        if "not authorized" in str(e):  # FRAGILE
            ...

Example - RIGHT way:
    try:
        service.decide(instance_id, user_id, "approve")
    except NotAuthorizedError as e:
        api_response(code=e.code, stage=e.stage_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PayHubError (base)
    |
    +-- WorkflowValidationError            bad input shape, nothing touched
    |
    +-- WorkflowStateError                 operation invalid for current state
    |   +-- InstanceNotActiveError
    |   +-- PaymentAlreadyHasActiveInstanceError
    |   +-- TemplateHasNoStagesError
    |   +-- TemplateInactiveError
    |   +-- StageMismatchError
    |
    +-- WorkflowAuthorizationError
    |   +-- NotAuthorizedError
    |
    +-- WorkflowNotFoundError
    |   +-- InstanceNotFoundError
    |   +-- TemplateNotFoundError
    |   +-- PaymentNotFoundError
    |
    +-- CollaboratorError
    |   +-- PersistenceUnavailableError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_WORKFLOW_INPUT      | Bad action, blank reason, bad paging
----------------|-----------------------------|-----------------------------------------
State           | INSTANCE_NOT_ACTIVE         | Decide/cancel on a terminal instance
                | PAYMENT_HAS_ACTIVE_INSTANCE | Second start while one is in progress
                | TEMPLATE_HAS_NO_STAGES      | Start on an empty template
                | TEMPLATE_INACTIVE           | Start on a disabled template
                | STAGE_MISMATCH              | Decision aimed at a stage already passed
----------------|-----------------------------|-----------------------------------------
Authorization   | NOT_AUTHORIZED              | User not assigned to the current stage
----------------|-----------------------------|-----------------------------------------
Not found       | INSTANCE_NOT_FOUND          | Instance id doesn't exist
                | TEMPLATE_NOT_FOUND          | Template id doesn't exist / no match
                | PAYMENT_NOT_FOUND           | Payment id doesn't exist
----------------|-----------------------------|-----------------------------------------
Collaborator    | PERSISTENCE_UNAVAILABLE     | Database unreachable or timed out
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONCURRENT_MODIFICATION     | Instance changed under a racing writer
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Update/delete of a progress entry

===============================================================================
RETRY POLICY
===============================================================================

``retryable`` is True only for collaborator and concurrency errors.  Those
are raised before anything is committed, so the caller may retry up to its
own bound.  The engine never retries on its own.  All other categories are
terminal for the call.
"""


class PayHubError(Exception):
    """
    Base exception for all PayHub engine errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "PAYHUB_ERROR"
    retryable: bool = False


# Validation errors


class WorkflowValidationError(PayHubError):
    """Input rejected before any storage access."""

    code: str = "INVALID_WORKFLOW_INPUT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# State errors


class WorkflowStateError(PayHubError):
    """Base exception for operations invalid in the current state."""

    code: str = "WORKFLOW_STATE_ERROR"


class InstanceNotActiveError(WorkflowStateError):
    """Decision or cancellation attempted on a terminal instance."""

    code: str = "INSTANCE_NOT_ACTIVE"

    def __init__(self, instance_id: str, status: str):
        self.instance_id = instance_id
        self.status = status
        super().__init__(
            f"Workflow instance {instance_id} is {status}, not in_progress"
        )


class PaymentAlreadyHasActiveInstanceError(WorkflowStateError):
    """A payment may have at most one in-progress workflow instance."""

    code: str = "PAYMENT_HAS_ACTIVE_INSTANCE"

    def __init__(self, payment_id: str, instance_id: str | None = None):
        self.payment_id = payment_id
        self.instance_id = instance_id
        super().__init__(
            f"Payment {payment_id} already has an active workflow instance"
            + (f" ({instance_id})" if instance_id else "")
        )


class TemplateHasNoStagesError(WorkflowStateError):
    """Workflow template defines no stages."""

    code: str = "TEMPLATE_HAS_NO_STAGES"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Workflow template {template_id} has no stages")


class TemplateInactiveError(WorkflowStateError):
    """Workflow template has been soft-disabled."""

    code: str = "TEMPLATE_INACTIVE"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Workflow template {template_id} is not active")


class StageMismatchError(WorkflowStateError):
    """Decision targeted a stage that is no longer current."""

    code: str = "STAGE_MISMATCH"

    def __init__(
        self,
        instance_id: str,
        expected_stage_id: str,
        current_stage_id: str | None,
    ):
        self.instance_id = instance_id
        self.expected_stage_id = expected_stage_id
        self.current_stage_id = current_stage_id
        super().__init__(
            f"Workflow instance {instance_id} is at stage {current_stage_id}, "
            f"not {expected_stage_id}"
        )


# Authorization errors


class WorkflowAuthorizationError(PayHubError):
    """Base exception for authorization failures."""

    code: str = "WORKFLOW_AUTHORIZATION_ERROR"


class NotAuthorizedError(WorkflowAuthorizationError):
    """User is not assigned to the instance's current stage."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, instance_id: str, user_id: str, stage_id: str | None):
        self.instance_id = instance_id
        self.user_id = user_id
        self.stage_id = stage_id
        super().__init__(
            f"User {user_id} may not decide stage {stage_id} "
            f"of workflow instance {instance_id}"
        )


# Not-found errors


class WorkflowNotFoundError(PayHubError):
    """Base exception for missing records."""

    code: str = "WORKFLOW_NOT_FOUND"


class InstanceNotFoundError(WorkflowNotFoundError):
    """Workflow instance not found."""

    code: str = "INSTANCE_NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Workflow instance not found: {instance_id}")


class TemplateNotFoundError(WorkflowNotFoundError):
    """Workflow template not found, or none matches a payment."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_ref: str):
        self.template_ref = template_ref
        super().__init__(f"Workflow template not found: {template_ref}")


class PaymentNotFoundError(WorkflowNotFoundError):
    """Payment not found."""

    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment not found: {payment_id}")


# Collaborator errors


class CollaboratorError(PayHubError):
    """Base exception for failures of external collaborators."""

    code: str = "COLLABORATOR_ERROR"
    retryable: bool = True


class PersistenceUnavailableError(CollaboratorError):
    """The persistence store could not be reached or timed out."""

    code: str = "PERSISTENCE_UNAVAILABLE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Persistence unavailable during {operation}: {detail}")


# Concurrency errors


class ConcurrencyError(PayHubError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class ConcurrentModificationError(ConcurrencyError):
    """Optimistic version check failed; another writer got there first."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability errors


class ImmutabilityError(PayHubError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
