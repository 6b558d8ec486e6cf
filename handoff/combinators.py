"""Declarative operators over enumerable sequences

These only use the public side of an enumerator: `request_next(token)` and
`dispose()`. Each transforming operator returns a new Enumerable whose
producer opens the source, pulls from it with the token of whatever request
it's currently serving, and disposes the source when it finishes or is
cancelled. The terminal operators (`first`, `single`, `to_list` and friends)
drive the source directly and dispose it before returning.

"""
from __future__ import annotations
from handoff.cancellation import CancellationToken
from handoff.enumerator import Enumerable, Enumerator, open_enumerator
from handoff.handshake import Handshake
import logging
import types
import typing as t

logger = logging.getLogger(__name__)

__all__ = [
    'where',
    'select',
    'take',
    'take_while',
    'skip',
    'skip_while',
    'batch',
    'default_if_empty',
    'union_all',
    'first',
    'first_or_default',
    'single',
    'single_or_default',
    'to_list',
]

T = t.TypeVar('T')
R = t.TypeVar('R')

class _Upstream(t.Generic[T]):
    "The source a combinator's producer pulls from, on behalf of the request it's serving"
    def __init__(self, source: t.Any, handshake: Handshake) -> None:
        self.enumerator: Enumerator[T] = open_enumerator(source)
        self.handshake = handshake

    async def next(self) -> t.Tuple[bool, t.Optional[T]]:
        return await self.enumerator.request_next(self.handshake.cancellation_token)

    async def __aenter__(self) -> _Upstream[T]:
        return self

    async def __aexit__(self,
                        exc_type: t.Optional[t.Type[BaseException]],
                        exc_value: t.Optional[BaseException],
                        traceback: t.Optional[types.TracebackType]) -> None:
        await self.enumerator.dispose()

def where(source: t.Any, predicate: t.Callable[..., bool], *, with_index: bool = False) -> Enumerable[T]:
    "Only the items for which `predicate` is true; with `with_index`, it's called as predicate(item, index)"
    async def producer(handshake: Handshake[T]) -> None:
        async with _Upstream[T](source, handshake) as upstream:
            index = 0
            while True:
                has_value, item = await upstream.next()
                if not has_value:
                    return
                matches = predicate(item, index) if with_index else predicate(item)
                if matches:
                    await handshake.produce(t.cast(T, item))
                index += 1
    return Enumerable(producer)

def select(source: t.Any, selector: t.Callable[..., R], *, with_index: bool = False) -> Enumerable[R]:
    "`selector` applied to every item; with `with_index`, it's called as selector(item, index)"
    async def producer(handshake: Handshake[R]) -> None:
        async with _Upstream[T](source, handshake) as upstream:
            index = 0
            while True:
                has_value, item = await upstream.next()
                if not has_value:
                    return
                await handshake.produce(selector(item, index) if with_index else selector(item))
                index += 1
    return Enumerable(producer)

def take(source: t.Any, count: int) -> Enumerable[T]:
    "The first `count` items"
    async def producer(handshake: Handshake[T]) -> None:
        if count <= 0:
            return
        async with _Upstream[T](source, handshake) as upstream:
            for _ in range(count):
                has_value, item = await upstream.next()
                if not has_value:
                    return
                await handshake.produce(t.cast(T, item))
    return Enumerable(producer)

def take_while(source: t.Any, predicate: t.Callable[[T], bool]) -> Enumerable[T]:
    "Items up to, not including, the first one for which `predicate` is false"
    async def producer(handshake: Handshake[T]) -> None:
        async with _Upstream[T](source, handshake) as upstream:
            while True:
                has_value, item = await upstream.next()
                if not has_value or not predicate(t.cast(T, item)):
                    return
                await handshake.produce(t.cast(T, item))
    return Enumerable(producer)

def skip(source: t.Any, count: int) -> Enumerable[T]:
    "Everything but the first `count` items"
    async def producer(handshake: Handshake[T]) -> None:
        async with _Upstream[T](source, handshake) as upstream:
            skipped = 0
            while True:
                has_value, item = await upstream.next()
                if not has_value:
                    return
                if skipped < count:
                    skipped += 1
                else:
                    await handshake.produce(t.cast(T, item))
    return Enumerable(producer)

def skip_while(source: t.Any, predicate: t.Callable[[T], bool]) -> Enumerable[T]:
    "Items from the first one for which `predicate` is false onwards"
    async def producer(handshake: Handshake[T]) -> None:
        async with _Upstream[T](source, handshake) as upstream:
            skipping = True
            while True:
                has_value, item = await upstream.next()
                if not has_value:
                    return
                if skipping and predicate(t.cast(T, item)):
                    continue
                skipping = False
                await handshake.produce(t.cast(T, item))
    return Enumerable(producer)

def batch(source: t.Any, size: t.Optional[int] = None, *,
          max_weight: t.Optional[int] = None,
          weight: t.Optional[t.Callable[[T], int]] = None) -> Enumerable[t.List[T]]:
    """Lists of consecutive items; the last list may be shorter

    A list is handed on once it holds `size` items, or once the items in it
    weigh at least `max_weight`, as measured by `weight`. An item which would
    push a non-empty list over `max_weight` starts a new list instead; an item
    which is heavier than `max_weight` on its own gets a list to itself.

    """
    if size is None and max_weight is None:
        raise ValueError("batch needs a size, a max_weight, or both")
    if size is not None and size < 1:
        raise ValueError(f"batch size must be at least 1, but got {size}")
    if max_weight is not None:
        if max_weight < 1:
            raise ValueError(f"batch max_weight must be at least 1, but got {max_weight}")
        if weight is None:
            raise ValueError("batch with a max_weight needs a weight function")
    async def producer(handshake: Handshake[t.List[T]]) -> None:
        async with _Upstream[T](source, handshake) as upstream:
            current: t.List[T] = []
            current_weight = 0
            while True:
                has_value, item = await upstream.next()
                if not has_value:
                    break
                item_weight = 0
                if max_weight is not None:
                    item_weight = t.cast(t.Callable[[T], int], weight)(t.cast(T, item))
                    if current and current_weight + item_weight > max_weight:
                        full, current, current_weight = current, [], 0
                        await handshake.produce(full)
                current.append(t.cast(T, item))
                current_weight += item_weight
                if ((size is not None and len(current) >= size)
                    or (max_weight is not None and current_weight >= max_weight)):
                    full, current, current_weight = current, [], 0
                    await handshake.produce(full)
            if current:
                await handshake.produce(current)
    return Enumerable(producer)

def default_if_empty(source: t.Any, default: t.Optional[T] = None) -> Enumerable[t.Optional[T]]:
    "The items of `source`, or just `default` if there aren't any"
    async def producer(handshake: Handshake[t.Optional[T]]) -> None:
        async with _Upstream[T](source, handshake) as upstream:
            empty = True
            while True:
                has_value, item = await upstream.next()
                if not has_value:
                    break
                empty = False
                await handshake.produce(item)
            if empty:
                await handshake.produce(default)
    return Enumerable(producer)

def union_all(*sources: t.Any) -> Enumerable[T]:
    "All the items of each source in turn, duplicates included"
    async def producer(handshake: Handshake[T]) -> None:
        for source in sources:
            async with _Upstream[T](source, handshake) as upstream:
                while True:
                    has_value, item = await upstream.next()
                    if not has_value:
                        break
                    await handshake.produce(t.cast(T, item))
    return Enumerable(producer)

async def first(source: t.Any, predicate: t.Optional[t.Callable[[T], bool]] = None, *,
                token: CancellationToken = CancellationToken.NONE) -> T:
    "The first item (matching `predicate`, if given); raises LookupError if there's none"
    async with open_enumerator(source) as enumerator:
        while True:
            has_value, item = await enumerator.request_next(token)
            if not has_value:
                raise LookupError("sequence contains no matching item", source)
            if predicate is None or predicate(item):
                return t.cast(T, item)

async def first_or_default(source: t.Any, default: t.Optional[T] = None,
                           predicate: t.Optional[t.Callable[[T], bool]] = None, *,
                           token: CancellationToken = CancellationToken.NONE) -> t.Optional[T]:
    "The first item (matching `predicate`, if given), or `default` if there's none"
    try:
        return await first(source, predicate, token=token)
    except LookupError:
        return default

async def _find_single(source: t.Any, predicate: t.Optional[t.Callable[[T], bool]],
                       token: CancellationToken) -> t.Tuple[int, t.Optional[T]]:
    "Returns how many items match, counting no further than 2, and the first match"
    matches = 0
    found: t.Optional[T] = None
    async with open_enumerator(source) as enumerator:
        while matches < 2:
            has_value, item = await enumerator.request_next(token)
            if not has_value:
                break
            if predicate is None or predicate(item):
                matches += 1
                if matches == 1:
                    found = item
    return matches, found

async def single(source: t.Any, predicate: t.Optional[t.Callable[[T], bool]] = None, *,
                 token: CancellationToken = CancellationToken.NONE) -> T:
    """The only item (matching `predicate`, if given)

    Raises LookupError if there's none, and ValueError if there are several.

    """
    matches, found = await _find_single(source, predicate, token)
    if matches == 0:
        raise LookupError("sequence contains no matching item", source)
    elif matches > 1:
        raise ValueError("sequence contains several matching items", source)
    return t.cast(T, found)

async def single_or_default(source: t.Any, default: t.Optional[T] = None,
                            predicate: t.Optional[t.Callable[[T], bool]] = None, *,
                            token: CancellationToken = CancellationToken.NONE) -> t.Optional[T]:
    "The only item (matching `predicate`, if given), or `default` if there isn't exactly one"
    matches, found = await _find_single(source, predicate, token)
    return found if matches == 1 else default

async def to_list(source: t.Any, *, token: CancellationToken = CancellationToken.NONE) -> t.List[T]:
    "All the items, in order"
    items: t.List[T] = []
    async with open_enumerator(source) as enumerator:
        while True:
            has_value, item = await enumerator.request_next(token)
            if not has_value:
                logger.debug("to_list: collected %d items from %s", len(items), source)
                return items
            items.append(t.cast(T, item))
