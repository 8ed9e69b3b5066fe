"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List


@dataclass(slots=True)
class Station:
    """A measurement site known to the external source."""

    id: int


@dataclass(slots=True)
class Measurement:
    """A single (date, value) observation for one sensor."""

    date: datetime
    value: float


@dataclass(slots=True)
class SensorReadings:
    """Readings fetched for one sensor key of a station, newest first."""

    key: str
    values: List[Measurement] = field(default_factory=list)
