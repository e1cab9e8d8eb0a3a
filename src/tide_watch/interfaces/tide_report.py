"""
Tide Report Data Models

These dataclasses define the contract between the tide analyzer and its
consumers. Samples flow in from the depth sounder and GPS, PhaseReports
flow out to the Signal K sink and the status endpoint.

Contract Version: 1.0.0
"""

from dataclasses import dataclass, field, asdict, replace
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional
import json
import math


class TidePhase(str, Enum):
    """Tide phase as published on environment.tide.phaseNow."""
    EBB = "ebb"       # Falling tide
    FLOOD = "flood"   # Rising tide


class Trend(IntEnum):
    """Locked depth trend. The integer value is the sign of the trend."""
    FALLING = -1
    UNDETERMINED = 0
    RISING = 1

    @property
    def phase(self) -> Optional[TidePhase]:
        if self is Trend.FALLING:
            return TidePhase.EBB
        if self is Trend.RISING:
            return TidePhase.FLOOD
        return None


@dataclass(frozen=True)
class Position:
    """Geographic position in decimal degrees."""
    latitude: float
    longitude: float

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        return cls(latitude=float(data["latitude"]), longitude=float(data["longitude"]))


@dataclass(frozen=True)
class Sample:
    """
    One recorded depth reading.

    The timer is wall-clock epoch milliseconds, depth is meters below the
    surface (transducer offset already applied upstream).
    """
    timer: float
    depth: float
    position: Position

    def to_dict(self) -> dict:
        return {
            "timer": self.timer,
            "depth": self.depth,
            "position": self.position.to_dict(),
        }


@dataclass
class ExtremeRecord:
    """
    A running or known high/low tide.

    Running extremes start from a sentinel depth (+inf for lows, -inf for
    highs) with no timer. wave_height is only set when the opposite extreme
    lies a plausible half period away.
    """
    depth: float
    timer: Optional[float] = None
    position: Optional[Position] = None
    wave_height: Optional[float] = None

    @classmethod
    def low_sentinel(cls) -> "ExtremeRecord":
        return cls(depth=math.inf)

    @classmethod
    def high_sentinel(cls) -> "ExtremeRecord":
        return cls(depth=-math.inf)

    @property
    def is_set(self) -> bool:
        return self.timer is not None

    def copy(self) -> "ExtremeRecord":
        return replace(self)

    def to_dict(self) -> dict:
        result = {
            "depth": self.depth if math.isfinite(self.depth) else None,
            "timer": self.timer,
            "position": self.position.to_dict() if self.position else None,
            "wave_height": self.wave_height,
        }
        return {k: v for k, v in result.items() if v is not None}


@dataclass
class PhaseReport:
    """
    Emitted once per confirmed phase transition.

    The known extremes are snapshots taken when the report was built, so a
    later commit does not rewrite a report that was already published.
    """
    timer: float
    phase: TidePhase
    lowest_known: Optional[ExtremeRecord] = None
    highest_known: Optional[ExtremeRecord] = None

    def to_dict(self) -> dict:
        return {
            "timer": self.timer,
            "phase": self.phase.value,
            "lowest_known": self.lowest_known.to_dict() if self.lowest_known else {},
            "highest_known": self.highest_known.to_dict() if self.highest_known else {},
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


@dataclass(frozen=True)
class PathValue:
    """A single Signal K path/value pair."""
    path: str
    value: Any

    def to_dict(self) -> dict:
        return {"path": self.path, "value": self.value}


@dataclass
class Location:
    """An anchorage known to the location registry."""
    id: int
    name: str
    position: Position

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "position": self.position.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Location":
        return cls(
            id=int(data["id"]),
            name=str(data.get("name", "")),
            position=Position.from_dict(data["position"]),
        )


@dataclass
class DeltaUpdate:
    """A Signal K delta document carrying one batch of values."""
    source_label: str
    timestamp: str
    values: List[PathValue] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "updates": [
                {
                    "source": {"label": self.source_label},
                    "timestamp": self.timestamp,
                    "values": [v.to_dict() for v in self.values],
                }
            ]
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)
