"""Temporizadores cancelables para los timeouts de checkpoints."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class TimeoutScheduler(Protocol):
    def schedule(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class AsyncioTimeoutScheduler:
    """Agenda callbacks en el event loop con `loop.call_later`.

    Si no se indica un loop se usa el que esté corriendo al momento de agendar,
    por lo que debe invocarse desde código asíncrono.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def schedule(self, delay: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay), callback, *args)
