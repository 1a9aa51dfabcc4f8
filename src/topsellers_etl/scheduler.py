from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Tuple, Union


def _hour_start(now: datetime) -> datetime:
    return now.replace(minute=0, second=0, microsecond=0)


def _next_interval_boundary(now: datetime, interval_minutes: int) -> datetime:
    hour = _hour_start(now)
    minute = (now.minute // interval_minutes + 1) * interval_minutes
    if minute >= 60:
        return hour + timedelta(hours=1)
    return hour + timedelta(minutes=minute)


@dataclass(frozen=True)
class RotatingGroupPolicy:
    groups: List[List[str]]
    interval_minutes: int = 10
    kind: str = "rotating_group"

    def current_group(self, now: datetime) -> Tuple[int, List[str]]:
        index = (now.minute // self.interval_minutes) % len(self.groups)
        return index, list(self.groups[index])

    def next_wake(self, now: datetime) -> datetime:
        return _next_interval_boundary(now, self.interval_minutes)


@dataclass(frozen=True)
class AllParallelPolicy:
    partitions: List[str]
    interval_minutes: int = 10
    kind: str = "all_parallel"

    def current_group(self, now: datetime) -> Tuple[int, List[str]]:
        return 0, list(self.partitions)

    def next_wake(self, now: datetime) -> datetime:
        return _next_interval_boundary(now, self.interval_minutes)


@dataclass(frozen=True)
class FixedSlotPolicy:
    partitions: List[str]
    slot_minutes: Tuple[int, ...] = (0,)
    kind: str = "fixed_slot"

    def current_group(self, now: datetime) -> Tuple[int, List[str]]:
        return 0, list(self.partitions)

    def next_wake(self, now: datetime) -> datetime:
        hour = _hour_start(now)
        for minute in sorted(self.slot_minutes):
            candidate = hour + timedelta(minutes=minute)
            if candidate > now:
                return candidate
        return hour + timedelta(hours=1, minutes=min(self.slot_minutes))


SchedulingPolicy = Union[RotatingGroupPolicy, AllParallelPolicy, FixedSlotPolicy]


def build_policy(schedule: dict, groups: List[List[str]]) -> SchedulingPolicy:
    kind = schedule.get("policy", "rotating_group")
    partitions = [cc for group in groups for cc in group]
    if kind == "rotating_group":
        interval = int(schedule.get("interval_minutes", 10))
        if interval <= 0 or interval > 60:
            raise ValueError("schedule.interval_minutes must be in 1..60")
        return RotatingGroupPolicy(groups=groups, interval_minutes=interval)
    if kind == "all_parallel":
        interval = int(schedule.get("interval_minutes", 10))
        if interval <= 0 or interval > 60:
            raise ValueError("schedule.interval_minutes must be in 1..60")
        return AllParallelPolicy(partitions=partitions, interval_minutes=interval)
    if kind == "fixed_slot":
        slots = tuple(int(m) for m in schedule.get("slot_minutes", [0]))
        if not slots or any(m < 0 or m > 59 for m in slots):
            raise ValueError("schedule.slot_minutes must be minutes in 0..59")
        return FixedSlotPolicy(partitions=partitions, slot_minutes=slots)
    raise ValueError(f"Unknown scheduling policy: {kind}")
