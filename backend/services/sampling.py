"""
Survey Review Hub - Sampling Gate

The sampling gate finalizes a configurable share of records at the supervisor
stage and routes the rest to the examiner.

A draw is a uniform integer in 1..100. The record is finalized by sampling
when ``draw <= sampling_percentage``, so a 70% setting finalizes draws 1-70.
"""

import random
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Iterator

from .workflow_engine import WorkflowStatus

DRAW_MIN = 1
DRAW_MAX = 100


class RandomSource(ABC):
    """Injectable uniform integer source."""

    @abstractmethod
    def randint(self, low: int, high: int) -> int:
        """Uniform integer in [low, high]."""
        pass


class SystemRandomSource(RandomSource):
    """
    OS entropy via random.SystemRandom. Holds no shared generator state, so
    concurrent callers get independent draws without locking.
    """

    def __init__(self):
        self._random = random.SystemRandom()

    def randint(self, low: int, high: int) -> int:
        return self._random.randint(low, high)


class SequenceRandomSource(RandomSource):
    """Replays a fixed sequence of draws (tests and demos)."""

    def __init__(self, draws: Iterable[int]):
        self._draws: Iterator[int] = iter(draws)
        self._lock = threading.Lock()

    def randint(self, low: int, high: int) -> int:
        with self._lock:
            value = next(self._draws)
        if not low <= value <= high:
            raise ValueError(f"Scripted draw {value} outside [{low}, {high}]")
        return value


@dataclass(frozen=True)
class SamplingDecision:
    draw: int
    percentage: int
    outcome: str

    @property
    def finalized(self) -> bool:
        return self.outcome == WorkflowStatus.FINALIZED_BY_SAMPLING.value

    def to_notes(self) -> str:
        branch = "finalized by sampling" if self.finalized else "sent to examiner"
        return (
            f"Sampling gate: drew {self.draw} (range {DRAW_MIN}-{DRAW_MAX}) "
            f"against {self.percentage}% -> {branch}"
        )

    def to_dict(self):
        return {"draw": self.draw, "percentage": self.percentage, "outcome": self.outcome}


class SamplingGate:
    def __init__(self, random_source: RandomSource):
        self.random_source = random_source

    def decide(self, sampling_percentage: int) -> SamplingDecision:
        if not DRAW_MIN <= sampling_percentage <= DRAW_MAX:
            raise ValueError(f"sampling_percentage must be {DRAW_MIN}-{DRAW_MAX}, got {sampling_percentage}")

        draw = self.random_source.randint(DRAW_MIN, DRAW_MAX)
        if draw <= sampling_percentage:
            outcome = WorkflowStatus.FINALIZED_BY_SAMPLING.value
        else:
            outcome = WorkflowStatus.PENDING_C.value
        return SamplingDecision(draw=draw, percentage=sampling_percentage, outcome=outcome)
