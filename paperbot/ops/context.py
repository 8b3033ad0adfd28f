from __future__ import annotations
from contextvars import ContextVar
from typing import Optional

# Context-local (safe for async & threads)
_current_tick_id: ContextVar[Optional[str]] = ContextVar("current_tick_id", default=None)


def set_tick_id(tick_id: str) -> None:
    _current_tick_id.set(tick_id)


def get_tick_id() -> Optional[str]:
    return _current_tick_id.get()


def clear_tick_id() -> None:
    _current_tick_id.set(None)
