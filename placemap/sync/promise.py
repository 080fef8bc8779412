"""
Completion Graph
================

A one-shot asyncio value container and a combinator that derives new
containers from it.

GUARANTEES:
===========
1. A Promise is settled exactly once, with a value or an exception
2. Any number of tasks may wait; a wait that times out or is cancelled
   leaves the promise untouched for every other waiter
3. ``derive`` runs its transform at most once, however many tasks wait
4. A failed source fails every derived promise with the same exception,
   without running the transform
"""

from __future__ import annotations
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar
import asyncio
import inspect
import logging

from ..contracts.base import Error, ErrorCode, PlacemapError, PromiseTimeout

logger = logging.getLogger(__name__)

T = TypeVar('T')
U = TypeVar('U')


class Promise(Generic[T]):
    """Single-assignment cell awaited by any number of tasks."""

    def __init__(self, name: str = "promise"):
        self.name = name
        self._ready = asyncio.Event()
        self._settled = False
        self._value: Optional[T] = None
        self._error: Optional[BaseException] = None

        # Set by derive(lazy=True); consumed by the first wait()
        self._starter: Optional[Callable[[], None]] = None
        self._task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        if not self._settled:
            state = "pending"
        elif self._error is not None:
            state = f"failed: {self._error!r}"
        else:
            state = "resolved"
        return f"<Promise {self.name} {state}>"

    @classmethod
    def resolved(cls, value: T, name: str = "promise") -> Promise[T]:
        promise: Promise[T] = cls(name)
        promise.resolve(value)
        return promise

    # =========================================================================
    # PRODUCER SIDE
    # =========================================================================

    @property
    def done(self) -> bool:
        return self._settled

    @property
    def failed(self) -> bool:
        return self._settled and self._error is not None

    @property
    def task(self) -> Optional[asyncio.Task]:
        """Background task settling this promise, once started."""
        return self._task

    def resolve(self, value: T) -> T:
        self._settle(value, None)
        return value

    def fail(self, error: BaseException) -> None:
        self._settle(None, error)

    async def fulfill(self, awaitable: Awaitable[T]) -> None:
        """Settle with the outcome of ``awaitable``, success or failure."""
        try:
            value = await awaitable
        except Exception as e:
            self.fail(e)
        else:
            self.resolve(value)

    def _settle(self, value: Optional[T], error: Optional[BaseException]) -> None:
        if self._settled:
            raise PlacemapError(Error.now(
                ErrorCode.ALREADY_SETTLED,
                f"{self.name} already settled",
                promise=self.name,
            ))
        self._settled = True
        self._value = value
        self._error = error
        self._ready.set()

    # =========================================================================
    # CONSUMER SIDE
    # =========================================================================

    def result(self) -> T:
        """Settled value without waiting; raises the failure if any."""
        if not self._settled:
            raise asyncio.InvalidStateError(f"{self.name} is still pending")
        if self._error is not None:
            raise self._error
        return self._value

    async def wait(self, timeout: Optional[float] = None) -> T:
        """
        Wait for the promise to settle.

        Raises PromiseTimeout after ``timeout`` seconds; task cancellation
        propagates as asyncio.CancelledError. Neither affects other waiters.
        """
        if self._starter is not None:
            starter, self._starter = self._starter, None
            starter()

        if not self._settled:
            try:
                await asyncio.wait_for(self._ready.wait(), timeout)
            except asyncio.TimeoutError:
                raise PromiseTimeout(Error.now(
                    ErrorCode.WAIT_TIMEOUT,
                    f"{self.name} not ready after {timeout}s",
                    promise=self.name,
                )) from None
        return self.result()


def derive(
    source: Promise[T],
    transform: Callable[[T], Any],
    name: Optional[str] = None,
    lazy: bool = False
) -> Promise[U]:
    """
    Derive a promise computed from ``source``'s value.

    Plain callables run on a worker thread so the event loop keeps serving
    requests; coroutine functions are awaited. With ``lazy`` the background
    task starts on the first wait() instead of immediately; eager derivation
    must be called from a running event loop.
    """
    target: Promise[U] = Promise(name or f"{source.name}>{getattr(transform, '__name__', 'transform')}")

    async def run() -> None:
        try:
            value = await source.wait()
        except Exception as e:
            target.fail(e)
            return

        try:
            if inspect.iscoroutinefunction(transform):
                out = await transform(value)
            else:
                out = await asyncio.to_thread(transform, value)
        except Exception as e:
            logger.warning("Derivation %s failed: %s", target.name, e)
            target.fail(e)
            return
        target.resolve(out)

    def start() -> None:
        target._task = asyncio.get_running_loop().create_task(run(), name=target.name)

    if lazy:
        target._starter = start
    else:
        start()
    return target
