"""Write-behind coalescing of bursty writes per key."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]


@dataclass
class _Slot:
    """State for one key: at most one pending and one in-flight operation."""

    wake: asyncio.Event = field(default_factory=asyncio.Event)
    operation: Operation | None = None
    future: "asyncio.Future[Any] | None" = None
    deadline: float = 0.0
    in_flight: "asyncio.Future[Any] | None" = None
    runner: "asyncio.Task[None] | None" = None


def _mark_retrieved(future: "asyncio.Future[Any]") -> None:
    # Nobody is required to await a scheduled write; failures are logged by the runner.
    if not future.cancelled():
        future.exception()


class WriteCoalescer:
    """Collapses bursts of operations on the same key into one deferred run.

    Every ``schedule`` call for a key within the delay window replaces the pending
    operation (latest wins) and restarts the delay. All callers that scheduled while
    the operation was pending share one future resolved with its result. Only one
    run per key is in flight at a time; a schedule during a run queues the next run
    after it settles.
    """

    def __init__(self, delay: float = 1.0) -> None:
        """Initialize coalescer.

        Args:
            delay: Seconds of quiet time before a pending operation runs
        """
        self._delay = delay
        self._slots: dict[str, _Slot] = {}

    def schedule(self, key: str, operation: Operation) -> "asyncio.Future[Any]":
        """Schedule operation for key and return the future shared by all joiners."""
        loop = asyncio.get_running_loop()
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _Slot()

        slot.operation = operation
        slot.deadline = loop.time() + self._delay
        if slot.future is None:
            slot.future = loop.create_future()
            slot.future.add_done_callback(_mark_retrieved)
        if slot.runner is None:
            slot.runner = loop.create_task(self._drain(key, slot), name=f"coalesce-{key}")
        return slot.future

    def has_pending(self, key: str) -> bool:
        """True while an operation for key is pending or in flight."""
        slot = self._slots.get(key)
        return slot is not None and (slot.operation is not None or slot.in_flight is not None)

    async def flush(self, key: str) -> Any:
        """Run the pending operation for key now and wait for everything queued.

        Raises:
            Exception: Whatever the operation raised
        """
        slot = self._slots.get(key)
        if slot is None:
            return None

        waiters = [f for f in (slot.in_flight, slot.future) if f is not None]
        if slot.operation is not None:
            slot.deadline = 0.0
            slot.wake.set()

        result = None
        for waiter in waiters:
            result = await asyncio.shield(waiter)
        return result

    async def flush_all(self) -> None:
        """Flush every key, raising the first failure after all keys were attempted."""
        first_error: Exception | None = None
        for key in list(self._slots):
            try:
                await self.flush(key)
            except Exception as e:
                logger.error(f"[WriteCoalescer] Flush failed for '{key}': {e}")
                first_error = first_error or e
        if first_error is not None:
            raise first_error

    def cancel(self, key: str) -> None:
        """Drop the pending operation for key and cancel its waiters."""
        slot = self._slots.pop(key, None)
        if slot is None:
            return
        if slot.runner is not None:
            slot.runner.cancel()
        for waiter in (slot.future, slot.in_flight):
            if waiter is not None and not waiter.done():
                waiter.cancel()
        logger.debug(f"[WriteCoalescer] Cancelled pending operation for '{key}'")

    def cancel_all(self) -> None:
        """Cancel every pending operation."""
        for key in list(self._slots):
            self.cancel(key)

    async def _drain(self, key: str, slot: _Slot) -> None:
        loop = asyncio.get_running_loop()
        try:
            while slot.operation is not None:
                remaining = slot.deadline - loop.time()
                if remaining > 0:
                    slot.wake.clear()
                    try:
                        await asyncio.wait_for(slot.wake.wait(), timeout=remaining)
                    except TimeoutError:
                        pass
                    continue

                operation, future = slot.operation, slot.future
                slot.operation = None
                slot.future = None
                slot.in_flight = future
                try:
                    result = await operation()
                except Exception as e:
                    logger.error(f"[WriteCoalescer] Operation failed for '{key}': {e}")
                    if future is not None and not future.done():
                        future.set_exception(e)
                else:
                    if future is not None and not future.done():
                        future.set_result(result)
                finally:
                    slot.in_flight = None
        finally:
            slot.runner = None
            if slot.operation is None and self._slots.get(key) is slot:
                del self._slots[key]
