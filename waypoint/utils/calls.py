from __future__ import annotations

import inspect
from typing import Any, Callable


async def maybe_await(fn: Callable[..., Any], *args: Any) -> Any:
    """Call ``fn`` and await the result when it is awaitable.

    Guards, actions and node handlers may be plain functions or coroutine
    functions; both go through here so the engines await each in sequence.
    """
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result
