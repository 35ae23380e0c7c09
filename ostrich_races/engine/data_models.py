from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class TimeOfDay(Enum):
    """Seven-step day cycle. Declaration order is the cycle order."""

    NIGHT = "night"
    DAWN = "dawn"
    MORNING = "morning"
    DAY = "day"
    AFTERNOON = "afternoon"
    DUSK = "dusk"
    EVENING = "evening"

    @classmethod
    def from_index(cls, index: int) -> "TimeOfDay":
        members = list(cls)
        if not 0 <= index < len(members):
            raise ValueError(f"Unknown time of day index: {index}")
        return members[index]

    @classmethod
    def from_str(cls, value: str) -> "TimeOfDay":
        try:
            return cls(value.lower())
        except ValueError as exc:
            raise ValueError(f"Unknown time of day: {value}") from exc

    @classmethod
    def from_hour(cls, hour: int) -> "TimeOfDay":
        if not 0 <= hour < 24:
            raise ValueError(f"Hour out of range: {hour}")
        if hour < 5:
            return cls.NIGHT
        if hour < 7:
            return cls.DAWN
        if hour < 10:
            return cls.MORNING
        if hour < 16:
            return cls.DAY
        if hour < 18:
            return cls.AFTERNOON
        if hour < 20:
            return cls.DUSK
        return cls.EVENING

    @property
    def index(self) -> int:
        return list(TimeOfDay).index(self)


class RaceState(Enum):
    WAITING = "waiting"
    COUNTING = "counting"
    RACING = "racing"
    FINISHED = "finished"


class AnnouncementKind(Enum):
    RACE_START = "race_start"
    WINNER = "winner"
    LEAD_CHANGE = "lead_change"
    INCIDENT = "incident"
    CHAIN_REACTION = "chain_reaction"


@dataclass(frozen=True)
class ColorScheme:
    """Identity slot in the entrant pool. Rendering uses the colours verbatim."""

    name: str
    color: str
    saddle: str
    collar: str
    body_color: str
    neck_color: str
    eye_style: str


@dataclass
class Entrant:
    number: int
    scheme: ColorScheme
    base_speed: float
    stamina: float
    consistency: float
    preferred_time: TimeOfDay
    odds: int = 12
    position: float = 0.0
    current_speed: float = 0.0
    finished: bool = False
    finish_time: Optional[float] = None
    finish_position: Optional[int] = None
    forced_finish: bool = False
    finish_sequence: Optional[int] = None

    @property
    def name(self) -> str:
        return self.scheme.name

    def reset(self) -> None:
        """Clears race state. Attributes and odds are untouched."""
        self.position = 0.0
        self.current_speed = 0.0
        self.finished = False
        self.finish_time = None
        self.finish_position = None
        self.forced_finish = False
        self.finish_sequence = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "name": self.name,
            "base_speed": self.base_speed,
            "stamina": self.stamina,
            "consistency": self.consistency,
            "preferred_time": self.preferred_time.value,
            "odds": self.odds,
        }


@dataclass(frozen=True)
class Announcement:
    kind: AnnouncementKind
    entrant_number: Optional[int]
    label: str
    race_time_ms: float = 0.0
    extra: Dict[str, Any] = field(default_factory=dict)
