"""Single conversion point between source dates and stored UTC timestamps."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Union

DateLike = Union[datetime, date, str]


class TimeNormalizer:
    """Applies the fixed source-to-storage offset.

    Both the write path (measurement dates) and the read path (query
    boundaries) go through the same instance, so stored and queried
    timestamps always share one frame.
    """

    def __init__(self, offset_hours: int = 2) -> None:
        self.offset = timedelta(hours=offset_hours)

    def compensate(self, value: DateLike) -> datetime:
        return self._to_utc(value) + self.offset

    @staticmethod
    def truncate_to_day(timestamp: datetime) -> datetime:
        return timestamp.replace(hour=0, minute=0, second=0, microsecond=0)

    def day_start(self, value: DateLike) -> datetime:
        return self.truncate_to_day(self.compensate(value))

    @staticmethod
    def _to_utc(value: DateLike) -> datetime:
        if isinstance(value, str):
            candidate = value.strip()
            if not candidate:
                raise ValueError("Timestamp is empty.")
            if candidate.endswith("Z"):
                candidate = candidate[:-1] + "+00:00"
            try:
                value = datetime.fromisoformat(candidate)
            except ValueError as exc:
                raise ValueError(f"Invalid timestamp format: {value!r}") from exc
        elif not isinstance(value, datetime):
            value = datetime.combine(value, time.min)

        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
