"""Correlation id propagation for webhook deliveries."""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"


def new_correlation_id() -> str:
    return uuid.uuid4().hex


def get_correlation_id() -> str:
    """Return the correlation id bound to the current context ("" if none)."""
    return correlation_id_var.get()


@contextmanager
def bound_correlation_id(cid: str | None = None) -> Iterator[str]:
    """Bind a correlation id for the duration of the block.

    A fresh id is generated when none is given. The previous value is
    restored on exit.
    """
    value = cid or new_correlation_id()
    token = correlation_id_var.set(value)
    try:
        yield value
    finally:
        correlation_id_var.reset(token)
