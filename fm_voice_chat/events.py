from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger("fm_voice_chat")

Listener = Callable[..., Any]


class Signal:
    """Synchronous observer list.

    Listeners run in connection order on the emitting thread. A listener that
    raises is logged and skipped so the emitter's own state change still
    completes.
    """

    def __init__(self, name: str):
        self.name = name
        self._listeners: list[Listener] = []

    def connect(self, listener: Listener) -> Listener:
        if listener not in self._listeners:
            self._listeners.append(listener)
        return listener

    def disconnect(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, *args: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(*args)
            except Exception:
                logger.exception("Listener %r for signal '%s' failed.", listener, self.name)

    def __len__(self) -> int:
        return len(self._listeners)

    def __repr__(self) -> str:
        return f"Signal(name={self.name!r}, listeners={len(self._listeners)})"
