"""Sources of randomness for the selector."""
import random
from abc import ABC, abstractmethod
from typing import Optional, Sequence, TypeVar

T = TypeVar("T")


class RandomSource(ABC):
    """Yields floats in [0, 1)."""

    @abstractmethod
    def next(self) -> float:
        """Draw the next value."""

    def index(self, size: int) -> int:
        """Uniform index into a sequence of ``size`` items."""
        if size <= 0:
            raise ValueError("Cannot draw an index from an empty sequence")
        return min(int(self.next() * size), size - 1)

    def choice(self, items: Sequence[T]) -> T:
        return items[self.index(len(items))]


class SystemRandomSource(RandomSource):
    """Process-wide generator, used for live selection."""

    def __init__(self, generator: Optional[random.Random] = None):
        self.generator = generator or random.Random()

    def next(self) -> float:
        return self.generator.random()


class SeededRandomSource(RandomSource):
    """Reproducible generator keyed by a string seed."""

    def __init__(self, seed: str):
        self.seed = seed
        self.generator = random.Random(seed)

    def next(self) -> float:
        return self.generator.random()
