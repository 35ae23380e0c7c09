from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Set

import numpy as np

from ostrich_races.config import get_config

from .data_models import Entrant
from .rng import resolve_rng


class PreRaceEventType(Enum):
    SICK = "sick"
    TIRED = "tired"
    MUDDY = "muddy"
    ENERGIZED = "energized"
    NERVOUS = "nervous"

    @classmethod
    def from_str(cls, value: str) -> "PreRaceEventType":
        try:
            return cls(value.lower())
        except ValueError as exc:
            raise ValueError(f"Unknown pre-race event: {value}") from exc


class InRaceEventType(Enum):
    TRIP = "trip"
    SPIN_OUT = "spin_out"
    BURST_OF_SPEED = "burst_of_speed"
    STUMBLE = "stumble"


@dataclass(frozen=True)
class PreRaceEventSpec:
    label: str
    probability: float
    speed: float = 0.0
    stamina: float = 0.0
    consistency: float = 0.0


@dataclass(frozen=True)
class InRaceEventSpec:
    label: str
    speed_multiplier: float
    duration_ms: float
    position_delta: float
    can_chain: bool
    chain_probability: float
    probability: float
    propel_chance: float = 0.0


# Declaration order is the roll order.
PRE_RACE_EVENTS: Dict[PreRaceEventType, PreRaceEventSpec] = {
    PreRaceEventType.SICK: PreRaceEventSpec("Sick", 0.05, speed=-0.20, stamina=-0.15),
    PreRaceEventType.TIRED: PreRaceEventSpec("Tired", 0.05, speed=-0.15, stamina=-0.10),
    PreRaceEventType.MUDDY: PreRaceEventSpec("Muddy", 0.06, speed=-0.10, consistency=-0.05),
    PreRaceEventType.ENERGIZED: PreRaceEventSpec("Energized", 0.03, speed=0.10),
    PreRaceEventType.NERVOUS: PreRaceEventSpec("Nervous", 0.05, consistency=-0.05),
}

IN_RACE_EVENTS: Dict[InRaceEventType, InRaceEventSpec] = {
    InRaceEventType.TRIP: InRaceEventSpec(
        "Trip", 0.85, 200, -0.003, True, 0.08, 0.0003
    ),
    InRaceEventType.SPIN_OUT: InRaceEventSpec(
        "Spin Out", 0.70, 400, -0.005, True, 0.10, 0.0002,
        propel_chance=get_config("events.spin_out_propel_chance", 0.15),
    ),
    InRaceEventType.BURST_OF_SPEED: InRaceEventSpec(
        "Burst of Speed", 1.05, 500, 0.005, False, 0.0, 0.001
    ),
    InRaceEventType.STUMBLE: InRaceEventSpec(
        "Stumble", 0.90, 200, -0.002, True, 0.05, 0.0005
    ),
}


@dataclass
class ActiveEvent:
    event_type: InRaceEventType
    spec: InRaceEventSpec
    start_ms: float
    source: Optional[int] = None
    propelled: bool = False
    has_propagated: bool = False

    @property
    def label(self) -> str:
        return self.spec.label

    @property
    def speed_multiplier(self) -> float:
        # A propelled spin-out is a shove forward, not a slowdown.
        return 1.0 if self.propelled else self.spec.speed_multiplier

    @property
    def position_delta(self) -> float:
        delta = self.spec.position_delta
        return abs(delta) if self.propelled else delta

    def expired(self, clock_ms: float) -> bool:
        return clock_ms - self.start_ms >= self.spec.duration_ms


@dataclass(frozen=True)
class ChainReaction:
    entrant: Entrant
    event_type: InRaceEventType
    source: Entrant


@dataclass(frozen=True)
class ChainGeometry:
    """
    Contact distances in normalized track units.

    Lanes are roster indices; ``lane_offset`` is the progress-equivalent gap
    between neighbouring lanes.
    """

    same_lane_reach: float = 0.07
    adjacent_lane_reach: float = 0.035
    lane_offset: float = 0.02
    max_candidates: int = 2

    @classmethod
    def from_config(cls) -> "ChainGeometry":
        return cls(
            same_lane_reach=get_config("events.chain.same_lane_reach", 0.07),
            adjacent_lane_reach=get_config("events.chain.adjacent_lane_reach", 0.035),
            lane_offset=get_config("events.chain.lane_offset", 0.02),
            max_candidates=get_config("events.chain.max_candidates", 2),
        )

    def reach(self, lane_diff: int) -> Optional[float]:
        if lane_diff == 0:
            return self.same_lane_reach
        if lane_diff == 1:
            return self.adjacent_lane_reach
        return None

    def distance(self, progress_gap: float, lane_diff: int) -> float:
        return math.hypot(progress_gap, lane_diff * self.lane_offset)


def event_severity(entrant: Entrant) -> float:
    """Share of an event's nominal effect that lands, between 0.5 and 1.0."""
    resilience = float(np.clip((entrant.consistency + entrant.stamina) / 2.0, 0.0, 1.0))
    return 1.0 - 0.5 * resilience


class EventEngine:
    """
    Owns pre-race conditions and transient in-race incidents for one race.

    Every roll draws from the engine's RNG so a seeded engine replays the same
    incidents on every peer.
    """

    def __init__(
        self,
        rng=None,
        event_cutoff: Optional[float] = None,
        check_interval_ticks: Optional[int] = None,
        tick_ms: Optional[float] = None,
        max_concurrent: Optional[int] = None,
        geometry: Optional[ChainGeometry] = None,
    ):
        self.rng = resolve_rng(rng)
        self.event_cutoff = event_cutoff if event_cutoff is not None else get_config("events.event_cutoff", 0.95)
        self.check_interval_ticks = (
            check_interval_ticks if check_interval_ticks is not None
            else get_config("events.check_interval_ticks", 60)
        )
        self.tick_ms = tick_ms if tick_ms is not None else get_config("race.tick_ms", 16)
        self.max_concurrent = max_concurrent if max_concurrent is not None else get_config("events.max_concurrent", 1)
        self.geometry = geometry or ChainGeometry.from_config()

        self.pre_race_events: Dict[int, PreRaceEventType] = {}
        self.active_events: Dict[int, ActiveEvent] = {}
        self._modified: Set[int] = set()

    # --- Pre-race ---

    def generate_pre_race_events(self, entrants: Sequence[Entrant]) -> Dict[int, PreRaceEventType]:
        self.pre_race_events.clear()
        self._modified.clear()
        for entrant in entrants:
            for event_type, spec in PRE_RACE_EVENTS.items():
                if self.rng.next() < spec.probability:
                    self.pre_race_events[entrant.number] = event_type
                    break
        return dict(self.pre_race_events)

    def get_pre_race_event(self, number: int) -> Optional[PreRaceEventType]:
        return self.pre_race_events.get(number)

    def apply_pre_race_modifiers(self, entrant: Entrant) -> bool:
        """Applies the entrant's condition once. Returns False when nothing changed."""
        event_type = self.pre_race_events.get(entrant.number)
        if event_type is None or entrant.number in self._modified:
            return False
        spec = PRE_RACE_EVENTS[event_type]
        entrant.base_speed *= 1 + spec.speed
        entrant.stamina *= 1 + spec.stamina
        entrant.consistency *= 1 + spec.consistency
        self._modified.add(entrant.number)
        return True

    def apply_all_pre_race_modifiers(self, entrants: Sequence[Entrant]) -> int:
        return sum(1 for entrant in entrants if self.apply_pre_race_modifiers(entrant))

    def restore_pre_race_events(
        self,
        events: Mapping[int, PreRaceEventType],
        modifiers_applied: bool = True,
    ) -> None:
        """Loads conditions received from a host. No RNG draws are made."""
        self.pre_race_events = dict(events)
        self._modified = set(events) if modifiers_applied else set()

    # --- In-race ---

    def get_active_event(self, number: int) -> Optional[ActiveEvent]:
        return self.active_events.get(number)

    def expire_events(self, clock_ms: float) -> List[int]:
        expired = [number for number, event in self.active_events.items() if event.expired(clock_ms)]
        for number in expired:
            del self.active_events[number]
        return expired

    def is_check_tick(self, clock_ms: float) -> bool:
        return math.floor(clock_ms / self.tick_ms) % self.check_interval_ticks == 0

    def check_for_event(self, entrant: Entrant, clock_ms: float) -> Optional[ActiveEvent]:
        if entrant.finished or entrant.position >= self.event_cutoff:
            return None

        current = self.active_events.get(entrant.number)
        if current is not None:
            if current.expired(clock_ms):
                del self.active_events[entrant.number]
            return None

        if len(self.active_events) >= self.max_concurrent:
            return None
        if not self.is_check_tick(clock_ms):
            return None

        # Rolls only happen on every Nth tick, so scale the per-tick chance up.
        for event_type, spec in IN_RACE_EVENTS.items():
            if self.rng.next() < spec.probability * self.check_interval_ticks:
                return self.trigger_event(entrant, event_type, clock_ms)
        return None

    def trigger_event(
        self,
        entrant: Entrant,
        event_type: InRaceEventType,
        clock_ms: float,
        source: Optional[int] = None,
    ) -> ActiveEvent:
        spec = IN_RACE_EVENTS[event_type]
        propelled = False
        if spec.propel_chance > 0:
            propelled = self.rng.next() < spec.propel_chance
        event = ActiveEvent(
            event_type=event_type,
            spec=spec,
            start_ms=clock_ms,
            source=source,
            propelled=propelled,
        )
        self.active_events[entrant.number] = event
        return event

    def check_chain_reactions(
        self,
        entrants: Sequence[Entrant],
        geometry: Optional[ChainGeometry] = None,
    ) -> List[ChainReaction]:
        """
        Rolls incident propagation from each carrier to its nearest neighbours.

        A source event keeps rolling every tick while active until it spreads
        once. Returned reactions are not yet applied; the caller triggers them.
        """
        geometry = geometry or self.geometry
        reactions: List[ChainReaction] = []
        claimed: Set[int] = set()
        lanes = {entrant.number: lane for lane, entrant in enumerate(entrants)}

        for source in entrants:
            event = self.active_events.get(source.number)
            if event is None or not event.spec.can_chain or event.has_propagated:
                continue

            candidates = []
            for other in entrants:
                if other.number == source.number or other.finished:
                    continue
                if other.number in self.active_events or other.number in claimed:
                    continue
                if other.position >= self.event_cutoff:
                    continue
                lane_diff = abs(lanes[source.number] - lanes[other.number])
                reach = geometry.reach(lane_diff)
                if reach is None:
                    continue
                distance = geometry.distance(other.position - source.position, lane_diff)
                if distance <= reach:
                    candidates.append((distance, reach, other))

            candidates.sort(key=lambda item: item[0])
            for distance, reach, other in candidates[: geometry.max_candidates]:
                closeness = 1.0 - distance / reach
                chance = event.spec.chain_probability * (0.5 + 0.5 * closeness)
                if self.rng.next() < chance:
                    reactions.append(ChainReaction(other, event.event_type, source))
                    claimed.add(other.number)
                    event.has_propagated = True
                    break
        return reactions

    def clear_active(self) -> None:
        self.active_events.clear()
