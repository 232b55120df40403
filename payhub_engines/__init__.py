"""
Module: payhub_engines
Responsibility:
    Package entrypoint that re-exports the pure workflow calculations.
    This is the canonical import surface for the kernel services and
    selectors.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import payhub_kernel/domain/ types (and sibling engine modules).

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()``.  Callers pass in
      whatever time they need.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Template selection and decision planning are traced via the
    ``@traced_engine`` decorator (see ``payhub_engines.tracer``), emitting
    PAYHUB_ENGINE_TRACE records with the call duration at DEBUG.
"""

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

__all__ = [
    "template_applies",
    "select_template",
    "first_stage",
    "next_stage",
    "is_assigned",
    "is_within_project_scope",
    "is_actionable",
    "plan_decision",
    "clamp_page_size",
    "paginate",
]
