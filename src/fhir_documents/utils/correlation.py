"""Correlation id propagation.

The current correlation id lives in a context variable so that concurrently
running archive units each see the id of the run that spawned them. The id is
also bound into the structlog context so every log event carries it.
"""

import contextlib
import uuid
from contextvars import ContextVar
from typing import Iterator, Optional

import structlog

_correlation_id: ContextVar[Optional[str]] = ContextVar(
    "correlation_id", default=None
)


def new_correlation_id() -> str:
    """Generate a fresh correlation id."""
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    """Return the correlation id of the current context, if any."""
    return _correlation_id.get()


@contextlib.contextmanager
def correlation_scope(correlation_id: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation id for the duration of the block.

    Args:
        correlation_id: Id to bind; a new one is generated when omitted

    Yields:
        The bound correlation id
    """
    correlation_id = correlation_id or new_correlation_id()
    token = _correlation_id.set(correlation_id)
    with structlog.contextvars.bound_contextvars(correlation_id=correlation_id):
        try:
            yield correlation_id
        finally:
            _correlation_id.reset(token)
