"""Single-resolution futures, and spawning of detached tasks

These are the two things the handshake needs from its host runtime beyond
trio's own primitives: a value which is resolved exactly once and can be
awaited, and a way to start the producer's task without tying it to the
lifetime of whichever consumer happened to ask for the first item.

"""
from __future__ import annotations
from handoff.outcome import Outcome, Value, Error, peek
import contextvars
import logging
import trio
import typing as t

logger = logging.getLogger(__name__)

__all__ = [
    'Future',
    'spawn',
]

T = t.TypeVar('T')

class Future(t.Generic[T]):
    """A result which is resolved at most once, and which any number of tasks can wait for

    The first call to `resolve` (or `send`/`throw`) wins; later calls are
    ignored and return False. Waiting on a resolved Future is still a trio
    checkpoint, so a cancelled waiter is cancelled even if the result is there.

    """
    def __init__(self) -> None:
        self._result: t.Optional[Outcome[T]] = None
        self._event = trio.Event()

    def done(self) -> bool:
        return self._result is not None

    def resolve(self, result: Outcome[T]) -> bool:
        if self._result is not None:
            return False
        self._result = result
        self._event.set()
        return True

    def send(self, value: T) -> bool:
        return self.resolve(Value(value))

    def throw(self, exn: BaseException) -> bool:
        return self.resolve(Error(exn))

    def result(self) -> T:
        "Return the value or raise the error of an already resolved Future"
        if self._result is None:
            raise RuntimeError("Future has not been resolved yet", self)
        return peek(self._result)

    async def get(self) -> T:
        await self._event.wait()
        assert self._result is not None
        return peek(self._result)

    def __repr__(self) -> str:
        return f"Future(done={self.done()})"

def spawn(async_fn: t.Callable[..., t.Awaitable[None]], *args: t.Any,
          nursery: t.Optional[trio.Nursery] = None, name: t.Optional[str] = None) -> None:
    """Start `async_fn(*args)` in `nursery`, or as a trio system task if no nursery is given

    A system task belongs to no caller; trio cancels it when the run finishes.
    It sees a copy of the spawning task's context variables, like a task
    started in a nursery would.

    `async_fn` is expected to handle its own errors: an exception escaping a
    system task crashes the whole run.

    """
    if nursery is not None:
        nursery.start_soon(async_fn, *args, name=name)
    else:
        logger.debug("spawning system task %s", name or async_fn)
        trio.lowlevel.spawn_system_task(async_fn, *args, name=name,
                                        context=contextvars.copy_context())
