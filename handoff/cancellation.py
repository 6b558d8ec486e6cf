"""Cancellation tokens

trio cancels work through cancel scopes, and a cancel scope belongs to the task
that entered it. A handoff sequence may be advanced from a different task on
every call, and its producer runs in a task of its own, so a request needs a
cancellation signal that is a plain value: something that can be passed from
call to call, polled, and hooked with a callback. That's a CancellationToken.

Cancelling a token runs its callbacks synchronously, in the cancelling task.
Like the rest of trio, tokens are not thread-safe; to cancel one from another
thread, use `trio.from_thread.run_sync(token.cancel)`.

"""
from __future__ import annotations
from handoff.errors import EnumerationCancelled
import contextlib
import functools
import logging
import trio
import typing as t

logger = logging.getLogger(__name__)

__all__ = [
    'CancellationToken',
    'cancel_scope_for',
]

def _do_nothing() -> None:
    pass

class CancellationToken:
    """A cooperative, poll-checkable cancellation signal

    `CancellationToken.NONE` can never be cancelled, and is the default
    wherever a token is optional. `CancellationToken.CANCELED` is already
    cancelled.

    """
    NONE: t.ClassVar[CancellationToken]
    CANCELED: t.ClassVar[CancellationToken]

    def __init__(self, *, can_be_cancelled: bool = True) -> None:
        self.can_be_cancelled = can_be_cancelled
        self._cancelled = False
        self._callbacks: t.Dict[object, t.Callable[[], None]] = {}

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        "Cancel this token, running every registered callback; cancelling twice does nothing"
        if not self.can_be_cancelled:
            raise RuntimeError("this token can't be cancelled", self)
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, {}
        logger.debug("%s: cancelled, running %d callbacks", self, len(callbacks))
        for callback in callbacks.values():
            callback()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise EnumerationCancelled()

    def register(self, callback: t.Callable[[], None]) -> t.Callable[[], None]:
        """Call `callback` when this token is cancelled; returns a function which unregisters it

        If the token is already cancelled, `callback` is called right away.

        """
        if self._cancelled:
            callback()
            return _do_nothing
        if not self.can_be_cancelled:
            return _do_nothing
        key = object()
        self._callbacks[key] = callback
        return functools.partial(self._callbacks.pop, key, None)

    async def wait(self) -> None:
        "Block until this token is cancelled"
        if self._cancelled:
            await trio.lowlevel.checkpoint()
            return
        event = trio.Event()
        unregister = self.register(event.set)
        try:
            await event.wait()
        finally:
            unregister()

    def __repr__(self) -> str:
        if self is CancellationToken.NONE:
            return "CancellationToken.NONE"
        return f"CancellationToken(cancelled={self._cancelled})"

@contextlib.contextmanager
def cancel_scope_for(token: CancellationToken) -> t.Iterator[trio.CancelScope]:
    """Enter a trio.CancelScope which is cancelled when `token` is

    ```
    with cancel_scope_for(token):
        await do_something_slow()
    ```

    """
    with trio.CancelScope() as scope:
        unregister = token.register(scope.cancel)
        try:
            yield scope
        finally:
            unregister()

CancellationToken.NONE = CancellationToken(can_be_cancelled=False)
CancellationToken.CANCELED = CancellationToken()
CancellationToken.CANCELED.cancel()
