"""
Cancellable call context.

A CallContext travels with every chat call and tool dispatch. It carries a
cancellation flag that any thread may set, an optional deadline, and a
free-form metadata dict for the caller's bookkeeping.

Adapters check the context before sending a request and before handling
each streamed event. While a response is open they also register a
callback with ``on_cancel`` that closes it, so cancelling from another
thread, or reaching the deadline, aborts a read that is blocked on the
network. The deadline also bounds the HTTP timeout of each request.

Usage:
    ctx = CallContext.with_timeout(30)
    reply = client.chat(history, context=ctx)

    # from another thread
    ctx.cancel()
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from agentwire.errors import ChatCancelledError


@dataclass
class CallContext:
    """
    Cancellation and deadline for one call.

    Attributes:
        deadline: Monotonic time after which the call counts as cancelled
        metadata: Caller-defined values (turn id, agent name, ...)
    """

    deadline: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    _event: threading.Event = field(default_factory=threading.Event, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _callbacks: list[Callable[[], None]] = field(default_factory=list, repr=False)
    _expired: bool = field(default=False, repr=False)

    @classmethod
    def with_timeout(cls, seconds: float, **metadata: Any) -> "CallContext":
        """Create a context that expires ``seconds`` from now."""
        return cls(deadline=time.monotonic() + seconds, metadata=metadata)

    def cancel(self) -> None:
        """Request cancellation. Safe to call from any thread, more than once."""
        self._event.set()
        with self._lock:
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Run ``callback`` once when the call is cancelled or its deadline passes.

        The callback runs on the thread that triggers it: the caller of
        cancel(), a deadline timer, or the current thread if the context
        is already cancelled.

        Returns:
            A function that unregisters the callback (and stops its timer)
        """
        with self._lock:
            if not self.cancelled:
                self._callbacks.append(callback)
                timer = None
                remaining = self.remaining()
                if remaining is not None:
                    timer = threading.Timer(remaining, self._expire, args=(callback,))
                    timer.daemon = True
                    timer.start()
                return lambda: self._unregister(callback, timer)
        callback()
        return lambda: None

    def _expire(self, callback: Callable[[], None]) -> None:
        with self._lock:
            self._expired = True
            if callback not in self._callbacks:
                return
            self._callbacks.remove(callback)
        callback()

    def _unregister(self, callback: Callable[[], None], timer: threading.Timer | None) -> None:
        if timer is not None:
            timer.cancel()
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    @property
    def cancelled(self) -> bool:
        """True once cancel() was called or the deadline has passed."""
        if self._event.is_set() or self._expired:
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None without one."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def raise_if_cancelled(self, backend: str = "", model: str = "") -> None:
        """
        Raise ChatCancelledError if the call should stop.

        Raises:
            ChatCancelledError: If cancelled or past the deadline
        """
        if self.cancelled:
            raise self.cancelled_error(backend=backend, model=model)

    def cancelled_error(self, backend: str = "", model: str = "") -> ChatCancelledError:
        """Build the ChatCancelledError describing why the call stopped."""
        reason = "cancelled" if self._event.is_set() else "deadline exceeded"
        return ChatCancelledError(
            message=f"chat call {reason}",
            backend=backend,
            model=model,
        )
