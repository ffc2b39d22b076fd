"""Time as a port: monotonic seconds, wall-clock milliseconds and sleeping."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    def monotonic(self) -> float: ...

    def wall_time_ms(self) -> int: ...

    async def sleep(self, seconds: float) -> None: ...
