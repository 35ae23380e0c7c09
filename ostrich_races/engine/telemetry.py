from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence


@dataclass
class EntrantFrame:
    number: int
    name: str
    lane: int
    position: float
    speed: float
    finished: bool
    finish_position: Optional[int]
    active_event: Optional[str]
    forced_finish: bool = False
    debug: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RaceFrame:
    tick: int
    time_ms: float
    state: str
    leader: Optional[int]
    entrants: List[EntrantFrame] = field(default_factory=list)

    def positions(self) -> Dict[int, float]:
        return {entrant.number: entrant.position for entrant in self.entrants}


class TelemetryCollector:
    def __init__(self, every_n_ticks: int = 1) -> None:
        self.every_n_ticks = max(1, every_n_ticks)
        self.frames: List[RaceFrame] = []

    def record_frame(self, frame: RaceFrame) -> None:
        if frame.tick % self.every_n_ticks == 0 or frame.state == "finished":
            self.frames.append(frame)

    def export(self) -> Sequence[RaceFrame]:
        return tuple(self.frames)

    def clear(self) -> None:
        self.frames.clear()
