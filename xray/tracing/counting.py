"""
Count strategies: how many candidates a stage produced.

A stage can return anything. The step wrapper turns that result into a
candidates_out count through a CountStrategy. Callers who know their result
shape pass one explicitly:

    await client.step(StepType.RANKING, "top-k", rank, count=AttributeCount("items"))

    await client.step(StepType.SELECTION, "pick", pick, count=lambda r: len(r.winners))

Without one, DEFAULT_COUNT applies:
    non-string sequence            -> len(result)
    other sized, non-mapping value -> len(result)
    anything else (scalars, None)  -> 1
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence, Sized
from typing import Any, Callable, Optional, Tuple, Union

_TEXT_TYPES = (str, bytes, bytearray)


class CountStrategy(ABC):
    """Maps a stage result to its candidates_out count."""

    @abstractmethod
    def count(self, result: Any) -> Optional[int]:
        """
        Return the count, or None if this strategy does not apply.

        Returning None lets a ChainCount fall through to the next strategy.
        """
        ...

    def __call__(self, result: Any) -> int:
        value = self.count(result)
        return 1 if value is None else value


class SequenceLength(CountStrategy):
    """Ordered sequences (list, tuple, range, ...) count their items."""

    def count(self, result: Any) -> Optional[int]:
        if isinstance(result, Sequence) and not isinstance(result, _TEXT_TYPES):
            return len(result)
        return None


class SizedLength(CountStrategy):
    """Objects exposing __len__ (sets, custom containers). Mappings are one output."""

    def count(self, result: Any) -> Optional[int]:
        if isinstance(result, Sized) and not isinstance(result, _TEXT_TYPES + (Mapping,)):
            return len(result)
        return None


class AttributeCount(CountStrategy):
    """Length of a named attribute, e.g. a response object's `items`."""

    def __init__(self, attribute: str):
        self.attribute = attribute

    def count(self, result: Any) -> Optional[int]:
        value = getattr(result, self.attribute, None)
        if value is None:
            return None
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, Sized):
            return len(value)
        return None


class ScalarCount(CountStrategy):
    """Every result is exactly one output."""

    def count(self, result: Any) -> Optional[int]:
        return 1


class ChainCount(CountStrategy):
    """First strategy that applies wins."""

    def __init__(self, *strategies: CountStrategy):
        self.strategies: Tuple[CountStrategy, ...] = strategies

    def count(self, result: Any) -> Optional[int]:
        for strategy in self.strategies:
            value = strategy.count(result)
            if value is not None:
                return value
        return None


class _CallableCount(CountStrategy):
    def __init__(self, fn: Callable[[Any], int]):
        self.fn = fn

    def count(self, result: Any) -> Optional[int]:
        return int(self.fn(result))


DEFAULT_COUNT: CountStrategy = ChainCount(SequenceLength(), SizedLength(), ScalarCount())

CountLike = Union[CountStrategy, Callable[[Any], int]]


def as_count_strategy(count: Optional[CountLike]) -> CountStrategy:
    """Normalize the `count=` option of step(): None, a strategy, or a plain callable."""
    if count is None:
        return DEFAULT_COUNT
    if isinstance(count, CountStrategy):
        return count
    if callable(count):
        return _CallableCount(count)
    raise TypeError(f"count must be a CountStrategy or callable, got {type(count).__name__}")
