"""
Helper functions for dealing with Twisted deferreds
"""

from __future__ import annotations

import inspect
from collections.abc import Coroutine
from functools import wraps
from typing import TYPE_CHECKING, Any, TypeVar

from twisted.internet.defer import Deferred

if TYPE_CHECKING:
    from collections.abc import Callable

    # typing.ParamSpec requires Python 3.10
    from typing_extensions import ParamSpec

    _P = ParamSpec("_P")


_T = TypeVar("_T")


def deferred_from_coro(o: Any) -> Any:
    """Convert a coroutine into a Deferred, or return the object as is if it
    isn't a coroutine"""
    if isinstance(o, Deferred):
        return o
    if inspect.isawaitable(o):
        return Deferred.fromCoroutine(o)  # type: ignore[arg-type]
    return o


def deferred_f_from_coro_f(
    coro_f: Callable[_P, Coroutine[Any, Any, _T]],
) -> Callable[_P, Deferred[_T]]:
    """Convert a coroutine function into a function that returns a Deferred.

    The coroutine function will be called at the time when the wrapper is
    called. Wrapper args will be passed to it. This is useful for callback
    chains and for tests, as Twisted functions expect functions that return
    Deferreds.
    """

    @wraps(coro_f)
    def f(*coro_args: _P.args, **coro_kwargs: _P.kwargs) -> Deferred[_T]:
        return deferred_from_coro(coro_f(*coro_args, **coro_kwargs))

    return f
