"""
Tagged outcome of a wrapped stage.

The step and run wrappers never build records inside except/finally blocks.
They attempt the stage, capture what happened as an Outcome, build the
record from it, then hand the original result or exception back with
unwrap().
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_type(self) -> Optional[str]:
        return type(self.error).__name__ if self.error is not None else None

    def unwrap(self) -> T:
        """Return the value, or re-raise the captured exception object unchanged."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


async def attempt(fn: Callable[[], Union[Awaitable[T], T]]) -> Outcome[T]:
    """
    Call fn(), await it if needed, and capture its result or failure.

    Cancellation is captured too so the caller can still emit a record;
    unwrap() re-raises it.
    """
    try:
        value = fn()
        if inspect.isawaitable(value):
            value = await value
    except (Exception, asyncio.CancelledError) as exc:
        return Outcome(error=exc)
    return Outcome(value=value)
