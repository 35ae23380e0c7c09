from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import numpy as np

from ostrich_races.config import get_config

from .data_models import Announcement, AnnouncementKind, Entrant, RaceState
from .events import ActiveEvent, EventEngine, event_severity
from .telemetry import EntrantFrame, RaceFrame, TelemetryCollector

POSITION_EPSILON = 1e-6


class RaceStateError(RuntimeError):
    """Raised when a race is driven through an illegal state transition."""


@dataclass(frozen=True)
class RaceSettings:
    race_length_ms: float = 10000
    tick_ms: float = 16
    countdown_ticks: int = 3
    finish_threshold: float = 0.999
    required_finishers: int = 4
    lead_change_cooldown_ms: float = 1000
    synthetic_spread_ms: float = 1000
    # Forced completion. Clock values are fractions of race_length_ms.
    near_line_margin: float = 0.02
    stage_one_clock: float = 0.90
    stage_one_progress: float = 0.95
    stage_two_clock: float = 0.95
    stage_two_progress: float = 0.90
    hard_cap_clock: float = 1.0

    @classmethod
    def from_config(cls) -> "RaceSettings":
        return cls(
            race_length_ms=get_config("race.race_length_ms", 10000),
            tick_ms=get_config("race.tick_ms", 16),
            countdown_ticks=get_config("race.countdown_ticks", 3),
            finish_threshold=get_config("race.finish_threshold", 0.999),
            required_finishers=get_config("race.required_finishers", 4),
            lead_change_cooldown_ms=get_config("race.lead_change_cooldown_ms", 1000),
            synthetic_spread_ms=get_config("race.synthetic_spread_ms", 1000),
            near_line_margin=get_config("forced_completion.near_line_margin", 0.02),
            stage_one_clock=get_config("forced_completion.stage_one_clock", 0.90),
            stage_one_progress=get_config("forced_completion.stage_one_progress", 0.95),
            stage_two_clock=get_config("forced_completion.stage_two_clock", 0.95),
            stage_two_progress=get_config("forced_completion.stage_two_progress", 0.90),
            hard_cap_clock=get_config("forced_completion.hard_cap_clock", 1.0),
        )

    @property
    def hard_cap_ms(self) -> float:
        return self.race_length_ms * self.hard_cap_clock


def _wall_clock_ms() -> float:
    return time.time() * 1000.0


class Race:
    """
    Race state machine: waiting -> counting -> racing -> finished.

    Racing advances in fixed ``tick_ms`` steps. ``update`` converts wall-clock
    time since the start timestamp into a whole number of steps, so peers
    running at different frame rates integrate identical states.
    """

    def __init__(
        self,
        entrants: Sequence[Entrant],
        event_engine: Optional[EventEngine] = None,
        rng=None,
        settings: Optional[RaceSettings] = None,
        clock: Optional[Callable[[], float]] = None,
        on_winner: Optional[Callable[[Entrant], None]] = None,
        on_announcement: Optional[Callable[[Announcement], None]] = None,
        telemetry: Optional[TelemetryCollector] = None,
        verbose: bool = False,
    ):
        if not entrants:
            raise ValueError("A race needs at least one entrant.")
        self.entrants: List[Entrant] = list(entrants)
        self.settings = settings or RaceSettings.from_config()
        self.event_engine = event_engine or EventEngine(rng, tick_ms=self.settings.tick_ms)
        self.rng = rng if rng is not None else self.event_engine.rng
        self.clock = clock or _wall_clock_ms
        self.on_winner = on_winner
        self.on_announcement = on_announcement
        self.telemetry = telemetry
        self.verbose = verbose

        self.state = RaceState.WAITING
        self.countdown = 0
        self.start_ms: Optional[float] = None
        self.clock_ms = 0.0
        self.tick = 0
        self._step_ms = self.settings.tick_ms
        self.winner: Optional[Entrant] = None
        self.leader: Optional[int] = None
        self.announcements: List[Announcement] = []
        self._last_lead_change_ms = -math.inf
        self._finish_counter = 0

    # --- State transitions ---

    def _require(self, *states: RaceState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise RaceStateError(f"Race is {self.state.value}; expected {allowed}.")

    def start_countdown(self) -> int:
        self._require(RaceState.WAITING)
        for entrant in self.entrants:
            entrant.reset()
        self.event_engine.clear_active()
        self.state = RaceState.COUNTING
        self.countdown = self.settings.countdown_ticks
        return self.countdown

    def countdown_tick(self) -> int:
        self._require(RaceState.COUNTING)
        if self.countdown > 0:
            self.countdown -= 1
        return self.countdown

    def start_race(self, start_ms: Optional[float] = None) -> None:
        """Starts racing from a local timestamp or one supplied by the host peer."""
        self._require(RaceState.COUNTING)
        if self.countdown > 0:
            raise RaceStateError(f"Countdown still at {self.countdown}.")
        self.state = RaceState.RACING
        self.start_ms = self.clock() if start_ms is None else float(start_ms)
        self.clock_ms = 0.0
        self.tick = 0
        self._announce(AnnouncementKind.RACE_START, None, "And they're off!")
        if self.verbose:
            print(f"[Race] Started with {len(self.entrants)} entrants.")

    def reset(self) -> None:
        """Abandons the race from any state and clears all transient state."""
        self.state = RaceState.WAITING
        self.countdown = 0
        self.start_ms = None
        self.clock_ms = 0.0
        self.tick = 0
        self.winner = None
        self.leader = None
        self.announcements.clear()
        self._last_lead_change_ms = -math.inf
        self._finish_counter = 0
        self.event_engine.clear_active()
        for entrant in self.entrants:
            entrant.reset()
        if self.telemetry:
            self.telemetry.clear()

    # --- Driving ---

    def update(self, now_ms: Optional[float] = None) -> RaceFrame:
        """Runs every fixed step that fits in the wall-clock time since the start."""
        if self.state is RaceState.RACING:
            now = self.clock() if now_ms is None else float(now_ms)
            elapsed = max(0.0, now - self.start_ms)
            target_tick = math.floor(elapsed / self.settings.tick_ms)
            while self.state is RaceState.RACING and self.tick < target_tick:
                self.step()
        return self.snapshot()

    def run_until_finished(self) -> List[int]:
        """Headless run from any pre-finish state. Returns the finishing order."""
        if self.state is RaceState.WAITING:
            self.start_countdown()
        if self.state is RaceState.COUNTING:
            while self.countdown > 0:
                self.countdown_tick()
            self.start_race(start_ms=0.0)
        while self.state is RaceState.RACING:
            self.step()
        return self.finishing_order()

    def step(self) -> None:
        self._require(RaceState.RACING)
        settings = self.settings
        self.tick += 1
        previous_ms = self.clock_ms
        # Clock never passes the hard cap; the final step may be short.
        self.clock_ms = min(self.tick * settings.tick_ms, settings.hard_cap_ms)
        self._step_ms = self.clock_ms - previous_ms

        self._advance_events()
        for entrant in self.entrants:
            if not entrant.finished:
                self._move(entrant)
        self._track_leader()
        self._apply_forced_completion()

        finished = self._finished_count()
        if finished >= settings.required_finishers or self.clock_ms >= settings.hard_cap_ms:
            self._finish_race()

        if self.telemetry:
            self.telemetry.record_frame(self.snapshot())

    # --- Per-step pieces ---

    def _advance_events(self) -> None:
        engine = self.event_engine
        engine.expire_events(self.clock_ms)

        for entrant in self.entrants:
            event = engine.check_for_event(entrant, self.clock_ms)
            if event is not None:
                self._apply_impulse(entrant, event)
                self._announce(AnnouncementKind.INCIDENT, entrant.number, event.label)

        for reaction in engine.check_chain_reactions(self.entrants):
            event = engine.trigger_event(
                reaction.entrant,
                reaction.event_type,
                self.clock_ms,
                source=reaction.source.number,
            )
            self._apply_impulse(reaction.entrant, event)
            self._announce(
                AnnouncementKind.CHAIN_REACTION,
                reaction.entrant.number,
                event.label,
                source=reaction.source.number,
            )

    def _apply_impulse(self, entrant: Entrant, event: ActiveEvent) -> None:
        ceiling = max(entrant.position, self.settings.finish_threshold - POSITION_EPSILON)
        shifted = entrant.position + event.position_delta * event_severity(entrant)
        entrant.position = float(np.clip(shifted, 0.0, ceiling))

    def _move(self, entrant: Entrant) -> None:
        settings = self.settings
        variation = (self.rng.next() - 0.5) * (1 - entrant.consistency) * 0.5
        speed = entrant.base_speed + variation
        speed *= 1 - entrant.position * (1 - entrant.stamina) * 0.5

        event = self.event_engine.get_active_event(entrant.number)
        if event is not None:
            speed *= 1 + (event.speed_multiplier - 1) * event_severity(entrant)

        entrant.current_speed = speed
        entrant.position = max(0.0, entrant.position + speed * self._step_ms / settings.race_length_ms)
        if entrant.position >= settings.finish_threshold:
            self._finish_entrant(entrant, self.clock_ms)

    def _finish_entrant(self, entrant: Entrant, finish_time: float, forced: bool = False) -> None:
        entrant.position = 1.0
        entrant.finished = True
        entrant.finish_time = finish_time
        entrant.forced_finish = forced
        entrant.finish_sequence = self._finish_counter
        self._finish_counter += 1

        if self.winner is None:
            self.winner = entrant
            self._announce(AnnouncementKind.WINNER, entrant.number, f"{entrant.name} wins!")
            if self.verbose:
                print(f"[Race] Winner: #{entrant.number} {entrant.name} at {finish_time:.0f}ms")
            if self.on_winner:
                self.on_winner(entrant)

    def _track_leader(self) -> None:
        if self.winner is not None:
            return
        leader = max(self.entrants, key=lambda e: e.position)
        if leader.number == self.leader:
            return
        previous = self.leader
        self.leader = leader.number
        if previous is None:
            return
        if self.clock_ms - self._last_lead_change_ms >= self.settings.lead_change_cooldown_ms:
            self._last_lead_change_ms = self.clock_ms
            self._announce(
                AnnouncementKind.LEAD_CHANGE,
                leader.number,
                f"{leader.name} takes the lead!",
                previous=previous,
            )

    def _unfinished_by_progress(self) -> List[Entrant]:
        # sorted() is stable, so equal positions keep roster order.
        return sorted(
            (e for e in self.entrants if not e.finished),
            key=lambda e: e.position,
            reverse=True,
        )

    def _finished_count(self) -> int:
        return sum(1 for e in self.entrants if e.finished)

    def _apply_forced_completion(self) -> None:
        settings = self.settings
        required = settings.required_finishers
        length = settings.race_length_ms

        if self._finished_count() == required - 1:
            near_line = [
                e for e in self._unfinished_by_progress()
                if e.position >= 1 - settings.near_line_margin
            ]
            if near_line:
                self._finish_entrant(near_line[0], self.clock_ms, forced=True)

        if self.clock_ms >= settings.stage_one_clock * length and self._finished_count() < required:
            for entrant in self._unfinished_by_progress():
                if entrant.position >= settings.stage_one_progress:
                    self._finish_entrant(entrant, self.clock_ms, forced=True)

        if self.clock_ms >= settings.stage_two_clock * length:
            for entrant in self._unfinished_by_progress():
                if self._finished_count() >= required:
                    break
                if entrant.position >= settings.stage_two_progress:
                    self._finish_entrant(entrant, self.clock_ms, forced=True)

    def _finish_race(self) -> None:
        settings = self.settings
        at_cap = self.clock_ms >= settings.hard_cap_ms and self._finished_count() < settings.required_finishers

        for entrant in self._unfinished_by_progress():
            entrant.finish_time = settings.race_length_ms + (1 - entrant.position) * settings.synthetic_spread_ms
            entrant.finish_sequence = self._finish_counter
            self._finish_counter += 1
            if at_cap:
                entrant.finished = True
                entrant.forced_finish = True

        ranked = sorted(self.entrants, key=lambda e: (e.finish_time, e.finish_sequence))
        for rank, entrant in enumerate(ranked, start=1):
            entrant.finish_position = rank

        if self.winner is None:
            self.winner = ranked[0]
            self._announce(AnnouncementKind.WINNER, self.winner.number, f"{self.winner.name} wins!")
            if self.on_winner:
                self.on_winner(self.winner)

        self.event_engine.clear_active()
        self.state = RaceState.FINISHED
        if self.verbose:
            order = ", ".join(f"#{e.number}" for e in ranked)
            print(f"[Race] Finished at {self.clock_ms:.0f}ms. Order: {order}")

    # --- Results and snapshots ---

    def _announce(self, kind: AnnouncementKind, number: Optional[int], label: str, **extra) -> None:
        announcement = Announcement(kind, number, label, self.clock_ms, dict(extra))
        self.announcements.append(announcement)
        if self.on_announcement:
            self.on_announcement(announcement)

    def drain_announcements(self) -> List[Announcement]:
        pending = list(self.announcements)
        self.announcements.clear()
        return pending

    def finishing_order(self) -> List[int]:
        self._require(RaceState.FINISHED)
        ranked = sorted(self.entrants, key=lambda e: e.finish_position)
        return [entrant.number for entrant in ranked]

    def get_winner(self) -> Optional[Entrant]:
        if self.state is not RaceState.FINISHED:
            return None
        return min(self.entrants, key=lambda e: e.finish_position)

    def snapshot(self) -> RaceFrame:
        frames = []
        for lane, entrant in enumerate(self.entrants):
            event = self.event_engine.get_active_event(entrant.number)
            frames.append(
                EntrantFrame(
                    number=entrant.number,
                    name=entrant.name,
                    lane=lane,
                    position=entrant.position,
                    speed=entrant.current_speed,
                    finished=entrant.finished,
                    finish_position=entrant.finish_position,
                    active_event=event.event_type.value if event else None,
                    forced_finish=entrant.forced_finish,
                )
            )
        return RaceFrame(
            tick=self.tick,
            time_ms=self.clock_ms,
            state=self.state.value,
            leader=self.leader,
            entrants=frames,
        )
