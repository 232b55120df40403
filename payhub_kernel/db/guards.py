"""
Module: payhub_kernel.db.guards
Responsibility: Translate database connectivity failures into the engine's
    collaborator error taxonomy.
Architecture position: Kernel > DB.  Imports exceptions only.

Invariants enforced:
    - A lost connection, a statement timeout, or an exhausted pool never
      leaks a driver exception to callers; it surfaces as
      PersistenceUnavailableError and the caller's transaction is left to
      roll back, so no partial state is committed.

Failure modes:
    - PersistenceUnavailableError (retryable) wrapping OperationalError,
      InterfaceError, or pool TimeoutError.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from payhub_kernel.exceptions import PersistenceUnavailableError
from payhub_kernel.logging_config import get_logger

logger = get_logger("db.guards")


@contextmanager
def persistence_guard(operation: str) -> Generator[None, None, None]:
    """Wrap a block of storage calls made on behalf of ``operation``."""
    try:
        yield
    except (OperationalError, InterfaceError, PoolTimeoutError) as exc:
        logger.warning(
            "persistence_unavailable",
            extra={"operation": operation, "error": type(exc).__name__},
        )
        detail = getattr(exc, "orig", None) or exc
        raise PersistenceUnavailableError(operation, str(detail)) from exc
