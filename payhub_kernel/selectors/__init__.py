"""Selectors -- read-only query layer."""

from payhub_kernel.selectors.identity import SqlIdentityProvider
from payhub_kernel.selectors.workflow_selector import MAX_PAGE_SIZE, WorkflowSelector

__all__ = [
    "MAX_PAGE_SIZE",
    "SqlIdentityProvider",
    "WorkflowSelector",
]
