"Exceptions raised by handoff."
from __future__ import annotations
from dataclasses import dataclass
import typing as t

__all__ = [
    'EnumerationCancelled',
    'ForEachCancelled',
    'ProtocolError',
    'NoCurrentValueError',
    'ConcurrentRequestError',
    'ForEachBreak',
    'ItemFailure',
    'ParallelForEachError',
]

class EnumerationCancelled(BaseException):
    """The enumeration was cancelled or disposed before it reached its end.

    Raised from `request_next` for the request that was outstanding when the
    cancellation happened, and thrown into the producer at its suspension point
    so that its cleanup code runs.

    This is a BaseException, like GeneratorExit, so that a producer's `except
    Exception` doesn't swallow it.

    """
    pass

class ForEachCancelled(EnumerationCancelled):
    "A for-each loop stopped because its cancellation token was cancelled."
    pass

class ProtocolError(Exception):
    "An enumerator or handshake was used in a way its protocol doesn't allow."
    pass

class NoCurrentValueError(ProtocolError):
    pass

class ConcurrentRequestError(ProtocolError):
    pass

class ForEachBreak(Exception):
    "Raise from a for_each action to stop the loop, like a `break` statement."
    pass

@dataclass
class ItemFailure:
    """An error raised while processing one item of a parallel for-each.

    `index` is the position of the item in the sequence; it is None when the
    error came from enumerating the sequence itself rather than from an action.

    """
    index: t.Optional[int]
    error: BaseException

    def __str__(self) -> str:
        where = "enumeration" if self.index is None else f"item {self.index}"
        return f"{where}: {self.error!r}"

class ParallelForEachError(Exception):
    "One or more actions of a parallel for-each failed."
    def __init__(self, failures: t.List[ItemFailure]) -> None:
        super().__init__(f"{len(failures)} failure(s) in parallel for-each: "
                         + ", ".join(str(failure) for failure in failures))
        self.failures = failures

    @property
    def exceptions(self) -> t.List[BaseException]:
        return [failure.error for failure in self.failures]

    def by_index(self) -> t.Dict[t.Optional[int], BaseException]:
        return {failure.index: failure.error for failure in self.failures}
