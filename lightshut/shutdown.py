"""Graceful shutdown coordination for asyncio code.

A :class:`Controller` is shared between tasks (and threads).  Any holder may
trigger the shutdown with a reason; tasks can wait for the trigger, have their
work cancelled by it, or delay the completion of the shutdown until their
clean-up is done.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Awaitable, Callable, Generator, Generic, TypeVar

T = TypeVar("T")
R = TypeVar("R")

_UNSET: Any = object()


class ShutdownHasStarted(Exception, Generic[T]):
    """Raised when a shutdown is triggered a second time."""

    def __init__(self, reason: T, ignored: T) -> None:
        super().__init__("shutdown has already commenced, can not delay any further")
        self.reason = reason
        self.ignored = ignored


class ShutdownHasCompleted(Exception, Generic[T]):
    """Raised when delaying a shutdown that has already completed."""

    def __init__(self, reason: T) -> None:
        super().__init__("shutdown has been completed, can not delay any further")
        self.reason = reason


class ShutdownCancelled(Exception, Generic[T]):
    """Raised by a cancellable awaitable when the shutdown wins the race."""

    def __init__(self, reason: T) -> None:
        super().__init__(f"cancelled by shutdown: {reason!r}")
        self.reason = reason


def _resolve(fut: asyncio.Future) -> None:
    if not fut.done():
        fut.set_result(None)


def _wake(waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future]]) -> None:
    for loop, fut in waiters:
        try:
            loop.call_soon_threadsafe(_resolve, fut)
        except RuntimeError:
            # The waiting loop has been closed; nobody is left to wake.
            pass


class _State(Generic[T]):
    """Shared, lock-protected state behind a controller and its tokens."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reason: T = _UNSET
        self.delay_tokens = 0
        self._on_trigger: list[tuple[asyncio.AbstractEventLoop, asyncio.Future]] = []
        self._on_complete: list[tuple[asyncio.AbstractEventLoop, asyncio.Future]] = []

    def _triggered(self) -> bool:
        return self.reason is not _UNSET

    def _completed(self) -> bool:
        return self.reason is not _UNSET and self.delay_tokens == 0

    def is_triggered(self) -> bool:
        with self._lock:
            return self._triggered()

    def is_completed(self) -> bool:
        with self._lock:
            return self._completed()

    def current_reason(self) -> T | None:
        with self._lock:
            return None if self.reason is _UNSET else self.reason

    @staticmethod
    def _take(waiters: list) -> list:
        taken = waiters[:]
        waiters.clear()
        return taken

    def shutdown(self, reason: T) -> None:
        with self._lock:
            if self.reason is not _UNSET:
                raise ShutdownHasStarted(self.reason, reason)
            self.reason = reason
            to_wake = self._take(self._on_trigger)
            if self.delay_tokens == 0:
                to_wake += self._take(self._on_complete)
        _wake(to_wake)

    def acquire_delay(self, check_completed: bool) -> None:
        with self._lock:
            if check_completed and self._completed():
                raise ShutdownHasCompleted(self.reason)
            self.delay_tokens += 1

    def release_delay(self) -> None:
        with self._lock:
            self.delay_tokens = max(self.delay_tokens - 1, 0)
            to_wake = self._take(self._on_complete) if self.delay_tokens == 0 else []
        _wake(to_wake)

    async def _wait(self, ready: Callable[[], bool], waiters: list) -> T:
        loop = asyncio.get_running_loop()
        while True:
            with self._lock:
                if ready():
                    return self.reason
                fut = loop.create_future()
                entry = (loop, fut)
                waiters.append(entry)
            try:
                await fut
            finally:
                with self._lock:
                    if entry in waiters:
                        waiters.remove(entry)

    async def wait_triggered(self) -> T:
        return await self._wait(self._triggered, self._on_trigger)

    async def wait_completed(self) -> T:
        return await self._wait(self._completed, self._on_complete)


class Signal(Generic[T]):
    """Awaitable that resolves to the shutdown reason once it is triggered."""

    def __init__(self, state: _State[T]) -> None:
        self._state = state

    def __await__(self) -> Generator[Any, None, T]:
        return self._state.wait_triggered().__await__()

    def with_cancel(self, awaitable: Awaitable[R]) -> Awaitable[R]:
        """Run ``awaitable`` unless the shutdown is triggered first.

        Awaiting the result gives the awaitable's value, or raises
        :class:`ShutdownCancelled` carrying the reason if the shutdown came first.
        """
        return _cancel_on_shutdown(self._state, awaitable)


async def _cancel_on_shutdown(state: _State[T], awaitable: Awaitable[R]) -> R:
    work = asyncio.ensure_future(awaitable)
    signal = asyncio.ensure_future(state.wait_triggered())
    try:
        await asyncio.wait({work, signal}, return_when=asyncio.FIRST_COMPLETED)
        if work.done():
            return work.result()
        raise ShutdownCancelled(signal.result())
    finally:
        for task in (work, signal):
            if not task.done():
                task.cancel()


class DelayToken(Generic[T]):
    """Keeps the shutdown from completing for as long as it is held.

    Every clone counts separately; all of them must be released.  A token is
    released when it is garbage collected, used as a context manager, or
    released explicitly.
    """

    def __init__(self, state: _State[T]) -> None:
        self._state = state
        self._held = True

    def clone(self) -> DelayToken[T]:
        """Return a new token that delays the shutdown independently."""
        self._state.acquire_delay(check_completed=False)
        return DelayToken(self._state)

    def release(self) -> None:
        """Stop delaying the shutdown; repeated calls have no effect."""
        if self._held:
            self._held = False
            self._state.release_delay()

    def with_future(self, awaitable: Awaitable[R]) -> Awaitable[R]:
        """Hand the token to ``awaitable``; it is released when that finishes."""
        return self._run(awaitable)

    async def _run(self, awaitable: Awaitable[R]) -> R:
        try:
            return await awaitable
        finally:
            self.release()

    def __enter__(self) -> DelayToken[T]:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    def __del__(self) -> None:
        try:
            self.release()
        except Exception:
            pass


class TriggerToken(Generic[T]):
    """Triggers the shutdown when triggered, finished with, or collected.

    Clones share one reason: whichever clone fires first triggers the shutdown.
    """

    def __init__(self, state: _State[T], cell: list[T]) -> None:
        self._state = state
        self._cell = cell
        self._armed = True

    def clone(self) -> TriggerToken[T]:
        """Return a token sharing this token's reason."""
        return TriggerToken(self._state, self._cell)

    def trigger(self) -> None:
        """Trigger the shutdown with the token's reason, if not already done."""
        if not self._armed:
            return
        self._armed = False
        if self._cell:
            reason = self._cell.pop()
            try:
                self._state.shutdown(reason)
            except ShutdownHasStarted:
                pass

    def forget(self) -> None:
        """Discard this token without triggering the shutdown."""
        self._armed = False

    def with_future(self, awaitable: Awaitable[R]) -> Awaitable[R]:
        """Trigger the shutdown once ``awaitable`` finishes, however it ends."""
        return self._run(awaitable)

    async def _run(self, awaitable: Awaitable[R]) -> R:
        try:
            return await awaitable
        finally:
            self.trigger()

    def __del__(self) -> None:
        try:
            self.trigger()
        except Exception:
            pass


class Controller(Generic[T]):
    """Shared handle for triggering, observing and delaying a shutdown."""

    def __init__(self) -> None:
        self._state: _State[T] = _State()

    def is_shutdown_triggered(self) -> bool:
        return self._state.is_triggered()

    def is_shutdown_completed(self) -> bool:
        return self._state.is_completed()

    def shutdown_reason(self) -> T | None:
        """The reason of the triggered shutdown, or None before the trigger."""
        return self._state.current_reason()

    def trigger_shutdown(self, reason: T) -> None:
        """Begin the shutdown; raises ShutdownHasStarted if already begun."""
        self._state.shutdown(reason)

    def completed_shutdown(self) -> Awaitable[T]:
        """Awaitable giving the reason once triggered and all delays released."""
        return self._state.wait_completed()

    def triggered_shutdown(self) -> Signal[T]:
        """Awaitable giving the reason once the shutdown is triggered."""
        return Signal(self._state)

    def with_cancel(self, awaitable: Awaitable[R]) -> Awaitable[R]:
        return self.triggered_shutdown().with_cancel(awaitable)

    def with_delay(self, awaitable: Awaitable[R]) -> Awaitable[R]:
        """Delay completion until ``awaitable`` finishes.

        Raises ShutdownHasCompleted if the shutdown has already completed.
        """
        return self.delay_token().with_future(awaitable)

    def with_trigger(self, reason: T, awaitable: Awaitable[R]) -> Awaitable[R]:
        return self.trigger_token(reason).with_future(awaitable)

    def delay_token(self) -> DelayToken[T]:
        """A token delaying completion; raises ShutdownHasCompleted if too late."""
        self._state.acquire_delay(check_completed=True)
        return DelayToken(self._state)

    def trigger_token(self, reason: T) -> TriggerToken[T]:
        return TriggerToken(self._state, [reason])