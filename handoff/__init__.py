"""Asynchronous sequences with generator-style suspend and resume

A producer computes a sequence of values, and computing each one may mean
waiting on other asynchronous events. A consumer advances through the sequence
one item at a time. We want the producer to run only when the consumer has
asked for something, like a Python generator does, but we also want it to
have its own trio task, so that its waits, its cancel scope and its cleanup
belong to it and not to whoever happens to be calling `move_next`.

The two sides meet in a single-slot handshake:

```
@enumerable
async def lines(handshake: Handshake[str], path: str) -> None:
    async with await trio.open_file(path) as f:
        async for line in f:
            await handshake.produce(line)

async with lines("log.txt").enumerator() as enumerator:
    async for line in enumerator:
        print(line)
```

Each `produce` hands one value to the waiting request and parks the producer
until the next request arrives. Leaving the `async with` disposes the
enumerator: the parked producer gets EnumerationCancelled raised out of
`produce`, its `async with` closes the file, and only then does the
enumerator's `__aexit__` return. An enumerator that's dropped without being
disposed is cleaned up the same way when it's garbage collected, though with
no guarantee about when.

On top of this sits `parallel_for_each`, which runs an action for every item
with bounded concurrency. It takes a permit before reading each item, so a
producer never gets more than `max_concurrency` items ahead of the actions
consuming them. Failures are collected, tagged with the index of their item,
and raised together at the end as a ParallelForEachError.

Cancellation can come from trio, as usual, or from a CancellationToken passed
to `move_next` or `parallel_for_each`. A token is a plain value, so unlike a
cancel scope it can be handed from one task to another along with the
requests it governs.

"""
from handoff.errors import (
    EnumerationCancelled, ForEachCancelled, ProtocolError, NoCurrentValueError,
    ConcurrentRequestError, ForEachBreak, ItemFailure, ParallelForEachError,
)
from handoff.cancellation import CancellationToken, cancel_scope_for
from handoff.concur import Future, spawn
from handoff.handshake import Handshake, Producer, ProducerState
from handoff.enumerator import Enumerator, Enumerable, enumerable, empty, from_iterable, open_enumerator
from handoff.foreach import DEFAULT_MAX_CONCURRENCY, resolve_max_concurrency, for_each, parallel_for_each
from handoff.combinators import (
    where, select, take, take_while, skip, skip_while, batch, default_if_empty, union_all,
    first, first_or_default, single, single_or_default, to_list,
)
