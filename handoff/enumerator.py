"""Enumerators and enumerable sequences

An Enumerator is the consumer's view of a producer: `move_next` advances it,
`current` is the last item it produced, and `dispose` tears it down, waiting
for the producer's cleanup to finish. It is also an async iterator and an
async context manager, so the usual way to consume one is:

```
async with numbers(10).enumerator() as enumerator:
    async for item in enumerator:
        ...
```

Enumerators are one-shot: after they run out they stay run out, and they
can't be reset. To go through a sequence again, ask its Enumerable for a new
enumerator.

"""
from __future__ import annotations
from handoff import finalization
from handoff.cancellation import CancellationToken
from handoff.errors import NoCurrentValueError
from handoff.handshake import Handshake, Producer, ProducerState
import collections.abc
import functools
import logging
import trio
import types
import typing as t
import weakref

logger = logging.getLogger(__name__)

__all__ = [
    'Enumerator',
    'Enumerable',
    'enumerable',
    'empty',
    'from_iterable',
    'open_enumerator',
]

T = t.TypeVar('T')

class Enumerator(t.Generic[T]):
    """Advances through the items of one run of a producer

    The producer isn't started until the first call to `move_next`. It runs in
    `nursery` if one is given, otherwise in a trio system task.

    `on_dispose` is called once, after the producer has finished, when the
    enumerator is disposed.

    """
    def __init__(self, producer: Producer[T], *,
                 nursery: t.Optional[trio.Nursery] = None,
                 on_dispose: t.Optional[t.Callable[[], None]] = None) -> None:
        self._handshake = Handshake(producer, nursery)
        self._on_dispose = on_dispose
        self._current: t.Optional[T] = None
        self._has_current = False
        self._disposed = False
        self._finalizer: t.Optional[weakref.finalize] = None

    def __repr__(self) -> str:
        return f"Enumerator({self._handshake.producer!r}, state={self.state.name})"

    @property
    def state(self) -> ProducerState:
        return self._handshake.state

    @property
    def is_complete(self) -> bool:
        "True once the producer has finished, failed or been cancelled"
        return self._handshake.state.terminal

    @property
    def current(self) -> T:
        if not self._has_current:
            raise NoCurrentValueError("call move_next before reading the current item", self)
        return t.cast(T, self._current)

    async def request_next(
            self, token: CancellationToken = CancellationToken.NONE,
    ) -> t.Tuple[bool, t.Optional[T]]:
        "Advance, returning (True, item) or (False, None); see Handshake.request_next"
        if self._finalizer is None and self._handshake.state is ProducerState.NOT_STARTED:
            self._finalizer = finalization.track(self, self._handshake)
        has_value, item = await self._handshake.request_next(token)
        if has_value:
            self._current = item
            self._has_current = True
        return has_value, item

    async def move_next(self, token: CancellationToken = CancellationToken.NONE) -> bool:
        """Advance to the next item, returning False if there are no more

        Once this has returned False, it always returns False.

        """
        has_value, _ = await self.request_next(token)
        return has_value

    def reset(self) -> t.NoReturn:
        raise NotImplementedError("enumerators are one-shot; get a new one from the Enumerable instead")

    async def dispose(self) -> None:
        """Cancel the producer if it's still running, and wait for it to clean up

        The wait is shielded from cancellation of the caller, so that the
        producer's cleanup is always finished when this returns. If the
        producer raised an exception while cleaning up, it's raised here.

        """
        if self._disposed:
            return
        self._disposed = True
        if self._finalizer is not None:
            self._finalizer.detach()
        handshake = self._handshake
        logger.debug("disposing %s", self)
        handshake.cancel()
        with trio.CancelScope(shield=True):
            await handshake.wait_finished()
        on_dispose, self._on_dispose = self._on_dispose, None
        if on_dispose is not None:
            on_dispose()
        if handshake.cleanup_error is not None:
            raise handshake.cleanup_error

    aclose = dispose

    async def __aenter__(self) -> Enumerator[T]:
        return self

    async def __aexit__(self,
                        exc_type: t.Optional[t.Type[BaseException]],
                        exc_value: t.Optional[BaseException],
                        traceback: t.Optional[types.TracebackType]) -> None:
        await self.dispose()

    def __aiter__(self) -> Enumerator[T]:
        return self

    async def __anext__(self) -> T:
        if await self.move_next():
            return self.current
        raise StopAsyncIteration

class Enumerable(t.Generic[T]):
    """A sequence which can be enumerated any number of times

    Each enumeration runs `producer` from the start in a new Enumerator.

    """
    def __init__(self, producer: Producer[T]) -> None:
        self.producer = producer

    def __repr__(self) -> str:
        return f"Enumerable({self.producer!r})"

    def enumerator(self, *,
                   nursery: t.Optional[trio.Nursery] = None,
                   on_dispose: t.Optional[t.Callable[[], None]] = None) -> Enumerator[T]:
        return Enumerator(self.producer, nursery=nursery, on_dispose=on_dispose)

    def __aiter__(self) -> Enumerator[T]:
        return self.enumerator()

def enumerable(func: t.Callable[..., t.Awaitable[None]]) -> t.Callable[..., Enumerable]:
    """Turn a producer function taking extra arguments into a function returning Enumerables

    ```
    @enumerable
    async def countdown(handshake: Handshake[int], start: int) -> None:
        for i in range(start, 0, -1):
            await trio.sleep(1)
            await handshake.produce(i)

    async for i in countdown(10):
        ...
    ```

    """
    @functools.wraps(func)
    def make_enumerable(*args: t.Any, **kwargs: t.Any) -> Enumerable:
        async def producer(handshake: Handshake) -> None:
            await func(handshake, *args, **kwargs)
        return Enumerable(producer)
    return make_enumerable

async def _produce_nothing(handshake: Handshake) -> None:
    pass

def empty() -> Enumerable[t.Any]:
    return Enumerable(_produce_nothing)

def from_iterable(iterable: t.Union[t.Iterable[T], t.AsyncIterable[T]]) -> Enumerable[T]:
    "Make an Enumerable which produces the items of a regular or async iterable"
    async def producer(handshake: Handshake[T]) -> None:
        if isinstance(iterable, collections.abc.AsyncIterable):
            iterator = iterable.__aiter__()
            try:
                async for item in iterator:
                    await handshake.produce(item)
            finally:
                aclose = getattr(iterator, 'aclose', None)
                if aclose is not None:
                    with trio.CancelScope(shield=True):
                        await aclose()
        else:
            sync_iterator = iter(iterable)
            try:
                for item in sync_iterator:
                    await handshake.produce(item)
            finally:
                close = getattr(sync_iterator, 'close', None)
                if close is not None:
                    close()
    return Enumerable(producer)

def open_enumerator(source: t.Any) -> Enumerator:
    "Get an Enumerator for an Enumerator, an Enumerable, or any regular or async iterable"
    if isinstance(source, Enumerator):
        return source
    elif isinstance(source, Enumerable):
        return source.enumerator()
    else:
        return from_iterable(source).enumerator()
