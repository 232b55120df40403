"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from payhub_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from payhub_kernel.domain.workflow import (
    INSTANCE_TRANSITIONS,
    PAYMENT_AWAITING_APPROVAL,
    PAYMENT_EFFECTS,
    SORTABLE_INSTANCE_FIELDS,
    TERMINAL_INSTANCE_STATUSES,
    ApprovalStats,
    DecisionAction,
    DecisionPlan,
    DecisionResult,
    EnrichedProgressEntry,
    IdentityProvider,
    InstanceStatus,
    InvoiceRef,
    Page,
    PageRequest,
    PaymentWorkflowEffect,
    ProgressAction,
    ProgressEntry,
    StageDefinition,
    StageSpec,
    StageTransition,
    TemplateSpec,
    UserProfile,
    UserScope,
    WorkflowHistory,
    WorkflowInstance,
    WorkflowTemplate,
    instance_invariant_violations,
)

__all__ = [
    # Clock
    "Clock",
    "SystemClock",
    "DeterministicClock",
    # State machine
    "InstanceStatus",
    "INSTANCE_TRANSITIONS",
    "TERMINAL_INSTANCE_STATUSES",
    "DecisionAction",
    "ProgressAction",
    "StageTransition",
    "PaymentWorkflowEffect",
    "PAYMENT_AWAITING_APPROVAL",
    "PAYMENT_EFFECTS",
    # Templates
    "StageDefinition",
    "WorkflowTemplate",
    "StageSpec",
    "TemplateSpec",
    # Instances
    "ProgressEntry",
    "WorkflowInstance",
    "instance_invariant_violations",
    "DecisionPlan",
    "DecisionResult",
    # Identity
    "UserScope",
    "UserProfile",
    "InvoiceRef",
    "IdentityProvider",
    # Read models
    "SORTABLE_INSTANCE_FIELDS",
    "PageRequest",
    "Page",
    "EnrichedProgressEntry",
    "WorkflowHistory",
    "ApprovalStats",
]
