"""Single-use signalling channel between lifecycle tasks."""

from __future__ import annotations

import asyncio
from typing import Generic, TypeVar

from wnodeprobe.utils.exceptions import SignalReuseError

T = TypeVar("T")


class OneShot(Generic[T]):
    """Fired exactly once, awaited exactly once.

    Firing twice or waiting twice raises SignalReuseError. The value passed to
    ``fire`` is returned by ``wait``.
    """

    def __init__(self, name: str):
        self.name = name
        self._event = asyncio.Event()
        self._value: T | None = None
        self._fired = False
        self._consumed = False

    @property
    def fired(self) -> bool:
        return self._fired

    def fire(self, value: T | None = None) -> None:
        if self._fired:
            raise SignalReuseError(self.name, "fired")
        self._fired = True
        self._value = value
        self._event.set()

    async def wait(self) -> T | None:
        if self._consumed:
            raise SignalReuseError(self.name, "consumed")
        self._consumed = True
        await self._event.wait()
        return self._value

    def __repr__(self) -> str:
        return f"OneShot({self.name!r}, fired={self._fired}, consumed={self._consumed})"
