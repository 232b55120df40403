"""ORM models for the PayHub workflow kernel."""

from payhub_kernel.models.directory import RoleModel, UserModel
from payhub_kernel.models.payment import InvoiceModel, PaymentModel
from payhub_kernel.models.workflow import (
    ProgressEntryModel,
    WorkflowInstanceModel,
    WorkflowStageModel,
    WorkflowTemplateModel,
)

__all__ = [
    "RoleModel",
    "UserModel",
    "InvoiceModel",
    "PaymentModel",
    "WorkflowTemplateModel",
    "WorkflowStageModel",
    "WorkflowInstanceModel",
    "ProgressEntryModel",
]
