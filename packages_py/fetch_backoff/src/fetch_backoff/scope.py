"""
Cancellation scopes for fetch_backoff

A CancelScope is an explicit cancellation token with an optional deadline.
Scopes form a tree: a child derived from a parent fires when the parent
fires, and its deadline never extends past the parent's.

Deadlines are evaluated lazily; every wait in this module is bounded by
the remaining time, so waiters wake up on their own when a deadline passes.
"""
import asyncio
import threading
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .errors import DeadlineExceededError, RequestCancelledError


T = TypeVar("T")


def _min_timeout(a: Optional[float], b: Optional[float]) -> Optional[float]:
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


def _waker(loop: asyncio.AbstractEventLoop, future: "asyncio.Future[None]") -> Callable[[], None]:
    """Build a thread-safe callback that resolves ``future`` on ``loop``."""

    def _set() -> None:
        if not future.done():
            future.set_result(None)

    def _wake() -> None:
        if not loop.is_closed():
            loop.call_soon_threadsafe(_set)

    return _wake


def _discard(awaitable: Awaitable[Any]) -> None:
    close = getattr(awaitable, "close", None)
    if asyncio.iscoroutine(awaitable) and close is not None:
        close()


class CancelScope:
    """
    Cancellation scope with an optional deadline.

    Safe to cancel from any thread. Waiting helpers are asyncio-native.

    Example:
        scope = CancelScope(timeout=5.0)
        attempt_scope = scope.child(timeout=1.0)
        response = await attempt_scope.run(transport.handle_async_request(request))
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        *,
        parent: Optional["CancelScope"] = None,
    ) -> None:
        """
        Create a new CancelScope.

        Args:
            timeout: Seconds until the scope expires (None for no deadline)
            parent: Scope this one derives from
        """
        self._lock = threading.Lock()
        self._parent = parent
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._error: Optional[BaseException] = None
        self._released = False
        self._callbacks: list[Callable[[], None]] = []

        if parent is not None:
            parent._add_done_callback(self._on_parent_done)

    def _on_parent_done(self) -> None:
        if self._parent is not None and self._parent._error is not None:
            self._fire(self._parent._error)

    def _fire(self, error: BaseException) -> None:
        with self._lock:
            if self._error is not None:
                return
            self._error = error
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def _add_done_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if self._error is None:
                self._callbacks.append(callback)
                return
        callback()

    def _remove_done_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    @property
    def deadline(self) -> Optional[float]:
        """Effective deadline on the ``time.monotonic`` clock, if any."""
        parent_deadline = self._parent.deadline if self._parent is not None else None
        return _min_timeout(self._deadline, parent_deadline)

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline (None when there is no deadline)."""
        deadline = self.deadline
        if deadline is None:
            return None
        return max(0.0, deadline - time.monotonic())

    @property
    def error(self) -> Optional[BaseException]:
        """The error this scope fired with, or None while it is live."""
        if self._error is None and self._parent is not None and not self._released:
            # Observing the parent fires it (and us) if its deadline passed
            _ = self._parent.error
        if self._error is None and self._deadline is not None and time.monotonic() >= self._deadline:
            self._fire(DeadlineExceededError())
        return self._error

    @property
    def cancelled(self) -> bool:
        """Whether the scope was cancelled, released or passed its deadline."""
        return self.error is not None

    @property
    def released(self) -> bool:
        return self._released

    def cancel(self, error: Optional[BaseException] = None) -> None:
        """
        Cancel the scope and every scope derived from it.

        Args:
            error: Error to report (default: RequestCancelledError)
        """
        self._fire(error if error is not None else RequestCancelledError())

    def release(self) -> None:
        """
        Release the scope's resources.

        Detaches the scope from its parent and cancels it. Idempotent.
        """
        with self._lock:
            if self._released:
                return
            self._released = True
        if self._parent is not None:
            self._parent._remove_done_callback(self._on_parent_done)
        self._fire(RequestCancelledError("scope released"))

    def child(self, timeout: Optional[float] = None) -> "CancelScope":
        """Derive a narrower scope bounded by ``timeout`` seconds."""
        return CancelScope(timeout, parent=self)

    def raise_if_cancelled(self) -> None:
        error = self.error
        if error is not None:
            raise error

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until the scope fires or ``timeout`` elapses.

        Args:
            timeout: Maximum seconds to wait (None to wait for the scope)

        Returns:
            Whether the scope has fired
        """
        if self.cancelled:
            return True

        loop = asyncio.get_running_loop()
        fired: asyncio.Future[None] = loop.create_future()
        callback = _waker(loop, fired)
        self._add_done_callback(callback)
        try:
            limit = _min_timeout(timeout, self.remaining())
            await asyncio.wait({fired}, timeout=limit)
        finally:
            self._remove_done_callback(callback)
            fired.cancel()

        return self.cancelled

    async def sleep(self, delay: float) -> bool:
        """
        Sleep for ``delay`` seconds unless the scope fires first.

        Returns:
            True if the full delay elapsed, False if the scope fired
        """
        return not await self.wait(max(0.0, delay))

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Run an awaitable, abandoning it if the scope fires first.

        The awaitable runs in its own task; when the scope fires the task
        is cancelled and the scope's error is raised.

        Raises:
            RequestCancelledError: The scope was cancelled or released
            DeadlineExceededError: The scope's deadline passed
        """
        if self.cancelled:
            _discard(awaitable)
            self.raise_if_cancelled()

        loop = asyncio.get_running_loop()
        task = asyncio.ensure_future(awaitable)
        fired: asyncio.Future[None] = loop.create_future()
        callback = _waker(loop, fired)
        self._add_done_callback(callback)
        try:
            while not task.done() and not self.cancelled:
                await asyncio.wait(
                    {task, fired},
                    timeout=self.remaining(),
                    return_when=asyncio.FIRST_COMPLETED,
                )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            self._remove_done_callback(callback)
            fired.cancel()

        if task.done():
            return task.result()

        task.cancel()
        await asyncio.wait({task})
        if not task.cancelled():
            # Mark the outcome as retrieved; the scope's error wins
            task.exception()
        self.raise_if_cancelled()
        raise RequestCancelledError()
