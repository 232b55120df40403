"""
payhub_engines.tracer -- Debug timing for pure engine calls.

Responsibility:
    ``@traced_engine`` wraps a pure engine function and emits one
    PAYHUB_ENGINE_TRACE record at DEBUG with the engine name and the
    call's duration.

Architecture position:
    Engines -- infrastructure support for the pure calculation layer.
    Emits a log record only.  Uses a logger under the ``payhub_kernel``
    namespace so the kernel's structured handler picks it up without an
    import.

Usage:
    from payhub_engines.tracer import traced_engine

    @traced_engine("workflow.select_template")
    def select_template(templates, *, invoice_type_id=None, ...):
        ...
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Callable
from typing import Any

_logger = logging.getLogger("payhub_kernel.engines.tracer")


def traced_engine(engine_name: str) -> Callable:
    """Decorator that logs PAYHUB_ENGINE_TRACE with the call duration."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            if not _logger.isEnabledFor(logging.DEBUG):
                return func(*args, **kwargs)

            t0 = time.monotonic()
            result = func(*args, **kwargs)
            _logger.debug(
                "PAYHUB_ENGINE_TRACE",
                extra={
                    "engine_name": engine_name,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return result

        return wrapper

    return decorator
