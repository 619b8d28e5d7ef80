from __future__ import annotations
from contextvars import ContextVar
from typing import Optional

# Context-local (safe for async & threads)
_current_invocation_id: ContextVar[Optional[str]] = ContextVar(
    "current_invocation_id", default=None
)


def set_invocation_id(invocation_id: str) -> None:
    _current_invocation_id.set(invocation_id)


def get_invocation_id() -> Optional[str]:
    return _current_invocation_id.get()


def clear_invocation_id() -> None:
    _current_invocation_id.set(None)
