"""Kernel services -- the write side.  Services flush, callers commit."""

from payhub_kernel.selectors.identity import SqlIdentityProvider
from payhub_kernel.services.template_service import TemplateService
from payhub_kernel.services.workflow_service import WorkflowService

__all__ = [
    "SqlIdentityProvider",
    "TemplateService",
    "WorkflowService",
]
