"The outcome library, plus a way to read a stored result more than once"
from outcome import Value, Error, Outcome
import typing as t

__all__ = [
    'Outcome',
    'Value',
    'Error',
    'peek',
]

T = t.TypeVar('T')

def peek(result: Outcome[T]) -> T:
    """Return the value of `result`, or raise its error, without consuming it

    `Outcome.unwrap` may only be called once, but a resolved future can be read
    by any number of waiters.

    """
    if isinstance(result, Error):
        raise result.error
    return result.value
