"""Strategies for attaching an external visit to a local class occurrence."""

from __future__ import annotations

import bisect
from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from app.models import ClassSchedule
from app.models.mixins import as_utc


class ScheduleMatcher(Protocol):
    """Resolve a visit start time to a stored schedule."""

    def match(self, start_time: datetime) -> ClassSchedule | None: ...


class ExactStartTimeMatcher:
    """Match only schedules whose start time is identical to the visit's."""

    def __init__(self, schedules: Iterable[ClassSchedule]) -> None:
        self._by_start: dict[datetime, ClassSchedule] = {}
        for schedule in schedules:
            self._by_start.setdefault(as_utc(schedule.start_time), schedule)

    def __len__(self) -> int:
        return len(self._by_start)

    def match(self, start_time: datetime) -> ClassSchedule | None:
        return self._by_start.get(as_utc(start_time))


class WindowStartTimeMatcher:
    """Match the nearest schedule starting within ``tolerance_seconds``."""

    def __init__(
        self, schedules: Iterable[ClassSchedule], *, tolerance_seconds: int
    ) -> None:
        ordered = sorted(schedules, key=lambda item: as_utc(item.start_time))
        self._schedules = ordered
        self._starts = [as_utc(item.start_time) for item in ordered]
        self._tolerance = tolerance_seconds

    def __len__(self) -> int:
        return len(self._schedules)

    def match(self, start_time: datetime) -> ClassSchedule | None:
        target = as_utc(start_time)
        index = bisect.bisect_left(self._starts, target)
        best: ClassSchedule | None = None
        best_delta: float | None = None
        for candidate in (index - 1, index):
            if 0 <= candidate < len(self._starts):
                delta = abs((self._starts[candidate] - target).total_seconds())
                if delta <= self._tolerance and (best_delta is None or delta < best_delta):
                    best = self._schedules[candidate]
                    best_delta = delta
        return best


def build_schedule_matcher(
    schedules: Iterable[ClassSchedule], *, tolerance_seconds: int = 0
) -> ExactStartTimeMatcher | WindowStartTimeMatcher:
    """Return the exact matcher for zero tolerance, otherwise the window matcher."""
    if tolerance_seconds <= 0:
        return ExactStartTimeMatcher(schedules)
    return WindowStartTimeMatcher(schedules, tolerance_seconds=tolerance_seconds)


__all__ = [
    "ExactStartTimeMatcher",
    "ScheduleMatcher",
    "WindowStartTimeMatcher",
    "build_schedule_matcher",
]
