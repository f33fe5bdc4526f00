"""
Linear vesting schedule.

``vested = allocated * clamp(now - start, 0, duration) // duration``
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from ..core.ledger_exceptions import InvalidScheduleError


@dataclass(frozen=True)
class VestingSchedule:
    """Immutable start timestamp and duration (seconds)."""

    start: int
    duration: int

    def __post_init__(self) -> None:
        for name in ("start", "duration"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidScheduleError(f"Schedule {name} must be an integer")
        if self.start < 0:
            raise InvalidScheduleError("Schedule start cannot be negative")
        if self.duration <= 0:
            raise InvalidScheduleError(
                "Schedule duration must be positive",
                details={"duration": self.duration},
            )

    @property
    def end(self) -> int:
        return self.start + self.duration

    def elapsed(self, now: int) -> int:
        return min(max(now - self.start, 0), self.duration)

    def vested(self, allocated: int, now: int) -> int:
        """Amount of ``allocated`` unlocked at ``now`` (floor division)."""
        return allocated * self.elapsed(now) // self.duration

    def has_started(self, now: int) -> bool:
        return now >= self.start

    def has_ended(self, now: int) -> bool:
        return now >= self.end

    def to_dict(self) -> Dict[str, Any]:
        return {"start": self.start, "duration": self.duration}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VestingSchedule":
        return cls(start=int(data["start"]), duration=int(data["duration"]))
