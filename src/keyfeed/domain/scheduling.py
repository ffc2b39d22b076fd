"""Cooperative scheduling: clocks, deadlines, poll loops and delivery fan-out.

Everything here runs on a single event loop. Suspension always goes through an
injected :class:`~keyfeed.domain.ports.Clock`, which lets tests replace real
sleeping with simulated time.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from logging import getLogger
from typing import TYPE_CHECKING

from keyfeed.domain.errors import UnavailableError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from keyfeed.domain.ports import Clock

log = getLogger(__name__)

type Handler[T] = Callable[[T], Awaitable[None] | None]


class SystemClock:
    """Real time: monotonic for intervals, wall clock for message timestamps."""

    def monotonic(self) -> float:
        return time.monotonic()

    def wall_time_ms(self) -> int:
        return time.time_ns() // 1_000_000

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(seconds, 0.0))


async def cancel_all(tasks: Iterable[asyncio.Future[object]]) -> None:
    """Cancel ``tasks`` and wait until each one has actually finished."""

    pending = [task for task in tasks if not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


async def race_with_deadline[T](
    clock: Clock,
    awaitable: Awaitable[T],
    seconds: float,
    *,
    what: str,
) -> T:
    """Await ``awaitable`` but give up after ``seconds`` of ``clock`` time.

    Raises :class:`UnavailableError` on expiry; the abandoned work is cancelled.
    """

    work: asyncio.Future[T] = asyncio.ensure_future(awaitable)
    timer: asyncio.Future[None] = asyncio.ensure_future(clock.sleep(seconds))
    try:
        done, _ = await asyncio.wait({work, timer}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        await cancel_all((work, timer))
    if work in done:
        return work.result()
    raise UnavailableError(f"{what} timed out after {seconds:g}s")


class PollScheduler:
    """Run a cycle, suspend for ``interval``, repeat until stopped or cancelled.

    A cycle that raises is logged and the loop carries on with the next one.
    """

    def __init__(self, clock: Clock, *, name: str = "poll") -> None:
        self.clock = clock
        self.name = name
        self._stopping = False

    @property
    def stopping(self) -> bool:
        return self._stopping

    def stop(self) -> None:
        self._stopping = True

    async def run(
        self,
        cycle: Callable[[], Awaitable[object]],
        interval: float,
        *,
        max_cycles: int | None = None,
    ) -> int:
        """Return the number of cycles that ran."""

        cycles = 0
        while not self._stopping:
            try:
                await cycle()
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                log.exception("%s cycle %d failed; retrying next cycle", self.name, cycles + 1)
            cycles += 1
            if self._stopping or (max_cycles is not None and cycles >= max_cycles):
                break
            await self.clock.sleep(interval)
        log.debug("%s loop finished after %d cycle(s)", self.name, cycles)
        return cycles


class DeliveryFanout[T]:
    """Hand each delivered item to every subscribed handler, sync or async."""

    def __init__(self, handlers: Iterable[Handler[T]] = ()) -> None:
        self._handlers: list[Handler[T]] = list(handlers)

    def subscribe(self, handler: Handler[T]) -> None:
        self._handlers.append(handler)

    def extended(self, handler: Handler[T]) -> DeliveryFanout[T]:
        """Return a new fan-out with the same handlers plus ``handler``."""

        return DeliveryFanout([*self._handlers, handler])

    def __len__(self) -> int:
        return len(self._handlers)

    async def dispatch(self, item: T) -> int:
        """Return how many handlers accepted ``item`` without raising."""

        accepted = 0
        for handler in self._handlers:
            try:
                result = handler(item)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                log.exception("Delivery handler %r failed", handler)
                continue
            accepted += 1
        return accepted
