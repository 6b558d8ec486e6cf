"""Running an action for every item of a sequence

`for_each` runs the action for one item at a time, in order.

`parallel_for_each` runs up to `max_concurrency` actions at once. It's careful
about admission: a permit is taken *before* the next item is read from the
sequence, so the limit bounds not just the number of running actions but also
how far the producer gets ahead of them. A slow consumer thus pushes back on
the producer, instead of the producer filling memory with items nobody is
ready to handle.

Failures of individual actions don't stop the loop unless
`stop_on_first_error` is set; either way they are all collected, each tagged
with the index of its item, and raised together as a ParallelForEachError
once every admitted action has finished.

"""
from __future__ import annotations
from handoff.cancellation import CancellationToken
from handoff.enumerator import Enumerator, open_enumerator
from handoff.errors import (
    EnumerationCancelled, ForEachBreak, ForEachCancelled, ItemFailure, ParallelForEachError,
)
import inspect
import logging
import os
import trio
import typing as t

logger = logging.getLogger(__name__)

__all__ = [
    'DEFAULT_MAX_CONCURRENCY',
    'resolve_max_concurrency',
    'for_each',
    'parallel_for_each',
]
T = t.TypeVar('T')
# called as action(item), or as action(item, index) when with_index is set
Action = t.Callable[..., t.Union[None, t.Awaitable[None]]]

DEFAULT_MAX_CONCURRENCY = 0
"Passing this as max_concurrency derives the limit from the number of CPUs"

def resolve_max_concurrency(max_concurrency: int) -> int:
    "Turn a requested max_concurrency into an actual limit, which is at least 1"
    if max_concurrency < 0:
        raise ValueError(f"max_concurrency must be non-negative, but got {max_concurrency}")
    if max_concurrency == DEFAULT_MAX_CONCURRENCY:
        max_concurrency = (os.cpu_count() or 1) - 1
    return max(max_concurrency, 1)

async def _call(action: Action, item: t.Any, index: int, with_index: bool) -> None:
    # actions may be plain functions, or plain functions returning awaitables;
    # either way an exception raised before the first await lands here too
    ret = action(item, index) if with_index else action(item)
    if inspect.isawaitable(ret):
        await ret

async def for_each(source: t.Any, action: Action, *,
                   with_index: bool = False,
                   token: CancellationToken = CancellationToken.NONE) -> None:
    """Call `action` on each item of `source` in turn

    With `with_index`, `action` is passed the item's position in the sequence
    as a second argument. `action` may raise ForEachBreak to stop early. The
    enumerator is disposed when the loop ends, however it ends. If `token` is
    cancelled, ForEachCancelled is raised.

    """
    enumerator: Enumerator[t.Any] = open_enumerator(source)
    try:
        index = 0
        while await enumerator.move_next(token):
            try:
                await _call(action, enumerator.current, index, with_index)
            except ForEachBreak:
                logger.debug("for_each over %s: break", enumerator)
                break
            index += 1
    except EnumerationCancelled:
        if token.cancelled:
            raise ForEachCancelled() from None
        raise
    finally:
        await enumerator.dispose()

class _ParallelForEach(t.Generic[T]):
    def __init__(self, action: Action, with_index: bool, max_concurrency: int,
                 stop_on_first_error: bool, graceful_break: bool,
                 token: CancellationToken) -> None:
        self.action = action
        self.with_index = with_index
        self.permits = trio.Semaphore(max_concurrency)
        self.stop_on_first_error = stop_on_first_error
        self.graceful_break = graceful_break
        self.token = token
        self.failures: t.List[ItemFailure] = []
        self.break_requested = False
        # covers reading the sequence, but not the running actions
        self.iteration_scope = trio.CancelScope()
        self.nursery: t.Optional[trio.Nursery] = None

    def request_break(self) -> None:
        "Admit no more items; if the break isn't graceful, cancel the running actions too"
        if not self.break_requested:
            logger.debug("parallel for-each: break requested")
        self.break_requested = True
        self.iteration_scope.cancel()
        if not self.graceful_break and self.nursery is not None:
            self.nursery.cancel_scope.cancel()

    def record(self, index: t.Optional[int], exn: BaseException) -> None:
        if self.token.cancelled and isinstance(exn, EnumerationCancelled):
            # that's just the cancellation we asked for
            return
        failure = ItemFailure(index, exn)
        logger.debug("parallel for-each: %s", failure)
        self.failures.append(failure)
        if self.stop_on_first_error:
            self.request_break()

    async def run_action(self, item: T, index: int) -> None:
        try:
            await _call(self.action, item, index, self.with_index)
        except (Exception, EnumerationCancelled) as exn:
            self.record(index, exn)
        finally:
            self.permits.release()

    async def iterate(self, enumerator: Enumerator[T], nursery: trio.Nursery) -> None:
        index = 0
        while not self.break_requested:
            await self.permits.acquire()
            try:
                has_value = not self.break_requested and await enumerator.move_next(self.token)
            except BaseException:
                self.permits.release()
                raise
            if not has_value:
                self.permits.release()
                return
            nursery.start_soon(self.run_action, enumerator.current, index)
            index += 1

    async def run(self, source: t.Any) -> None:
        enumerator: Enumerator[T] = open_enumerator(source)
        async with trio.open_nursery() as nursery:
            self.nursery = nursery
            unregister = self.token.register(self.request_break)
            try:
                with self.iteration_scope:
                    await self.iterate(enumerator, nursery)
            except (Exception, EnumerationCancelled) as exn:
                self.record(None, exn)
            finally:
                unregister()
                try:
                    await enumerator.dispose()
                except Exception as exn:
                    self.record(None, exn)
        if self.token.cancelled:
            if self.failures:
                raise ForEachCancelled() from ParallelForEachError(self.failures)
            raise ForEachCancelled()
        if self.failures:
            raise ParallelForEachError(self.failures)

async def parallel_for_each(
        source: t.Any, action: Action,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY, *,
        with_index: bool = False,
        stop_on_first_error: bool = False,
        graceful_break: bool = True,
        token: CancellationToken = CancellationToken.NONE,
) -> None:
    """Call `action` on each item of `source`, with up to `max_concurrency` calls running at once

    `source` may be an Enumerator, which is disposed at the end, an
    Enumerable, or any regular or async iterable. `action` may be a regular
    or an async function; with `with_index`, it is passed the item's position
    in the sequence as a second argument. `max_concurrency` of 0 means one
    less than the number of CPUs, but at least 1.

    Returns once the sequence is exhausted (or the loop broken) and every
    started action has finished. If any action failed, raises a
    ParallelForEachError containing all the failures.

    With `stop_on_first_error`, the first failure stops admission of new
    items. Cancelling `token` does the same, and makes us raise
    ForEachCancelled at the end. In both cases, actions already running are
    left to finish, unless `graceful_break` is False, in which case they are
    cancelled.

    """
    loop = _ParallelForEach(action, with_index, resolve_max_concurrency(max_concurrency),
                            stop_on_first_error, graceful_break, token)
    await loop.run(source)
