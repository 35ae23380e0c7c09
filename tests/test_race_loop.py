import pytest

from ostrich_races.engine import (
    AnnouncementKind,
    Entrant,
    EventEngine,
    Race,
    RaceSettings,
    RaceState,
    RaceStateError,
    SeededRandom,
    TelemetryCollector,
    TimeOfDay,
    initialize_roster,
)
from ostrich_races.engine.events import InRaceEventType
from ostrich_races.engine.roster import ENTRANT_POOL

SETTINGS = RaceSettings()


class FlatRng:
    """Always returns the midpoint, so speed variation is zero."""

    def next(self):
        return 0.5

    def next_float(self, min_value, max_value):
        return min_value + (max_value - min_value) * 0.5

    def next_int(self, min_value, max_value):
        return min_value


def _entrant(number, speed=0.0, stamina=1.0, consistency=1.0):
    return Entrant(
        number=number,
        scheme=ENTRANT_POOL[number - 1],
        base_speed=speed,
        stamina=stamina,
        consistency=consistency,
        preferred_time=TimeOfDay.DAY,
    )


def _seeded_race(seed, settings=SETTINGS, **kwargs):
    rng = SeededRandom(seed)
    entrants = initialize_roster(TimeOfDay.DAY, rng)
    engine = EventEngine(rng, tick_ms=settings.tick_ms)
    engine.generate_pre_race_events(entrants)
    engine.apply_all_pre_race_modifiers(entrants)
    return Race(entrants, event_engine=engine, rng=rng, settings=settings, **kwargs)


def _scripted_race(entrants, settings=SETTINGS):
    """Race with no incidents and no speed noise, already racing at t=0."""
    rng = FlatRng()
    engine = EventEngine(rng, event_cutoff=0.0, tick_ms=settings.tick_ms)
    race = Race(entrants, event_engine=engine, rng=rng, settings=settings)
    race.start_countdown()
    while race.countdown > 0:
        race.countdown_tick()
    race.start_race(start_ms=0.0)
    return race


@pytest.mark.parametrize("seed", range(12))
def test_every_seeded_race_finishes(seed):
    race = _seeded_race(seed)
    order = race.run_until_finished()

    assert race.state is RaceState.FINISHED
    assert sorted(order) == list(range(1, 9))
    assert sum(1 for e in race.entrants if e.finished) >= SETTINGS.required_finishers
    assert race.clock_ms <= SETTINGS.hard_cap_ms
    assert race.get_winner().number == order[0]
    assert sorted(e.finish_position for e in race.entrants) == list(range(1, 9))


def test_same_seed_same_result():
    first = _seeded_race(321)
    second = _seeded_race(321)
    assert first.run_until_finished() == second.run_until_finished()
    assert [e.finish_time for e in first.entrants] == [e.finish_time for e in second.entrants]


def test_illegal_transitions_raise():
    race = _seeded_race(1)
    with pytest.raises(RaceStateError):
        race.step()
    with pytest.raises(RaceStateError):
        race.start_race()
    with pytest.raises(RaceStateError):
        race.finishing_order()

    race.start_countdown()
    with pytest.raises(RaceStateError):
        race.start_race()
    with pytest.raises(RaceStateError):
        race.start_countdown()


def test_winner_callback_fires_once():
    winners = []
    race = _seeded_race(8, on_winner=winners.append)
    order = race.run_until_finished()
    assert len(winners) == 1
    assert winners[0].number == order[0]


def test_start_and_winner_are_announced():
    race = _seeded_race(5)
    race.run_until_finished()
    kinds = [a.kind for a in race.drain_announcements()]
    assert kinds[0] is AnnouncementKind.RACE_START
    assert kinds.count(AnnouncementKind.WINNER) == 1
    assert race.drain_announcements() == []


def test_near_line_entrant_forced_in_as_fourth():
    entrants = [_entrant(n, speed=1.0) for n in (1, 2, 3)] + [_entrant(n) for n in range(4, 9)]
    race = _scripted_race(entrants)
    for entrant in entrants[:3]:
        entrant.position = 0.998
    entrants[3].position = 0.985
    for entrant in entrants[4:]:
        entrant.position = 0.1

    race.step()

    assert race.state is RaceState.FINISHED
    assert race.finishing_order()[:4] == [1, 2, 3, 4]
    assert entrants[3].forced_finish is True
    assert not any(e.forced_finish for e in entrants[:3])
    assert entrants[4].finish_time == pytest.approx(10000 + 0.9 * 1000)


def test_late_race_progress_rule_finishes_leaders():
    entrants = [_entrant(n) for n in range(1, 9)]
    race = _scripted_race(entrants)
    entrants[0].position = 0.96
    entrants[1].position = 0.97
    for entrant in entrants[2:]:
        entrant.position = 0.5

    while race.state is RaceState.RACING:
        race.step()

    # Clock first reaches 90% of the race on tick 563 (9008ms).
    assert entrants[1].finish_time == 9008
    assert entrants[0].finish_time == 9008
    assert race.finishing_order() == [2, 1, 3, 4, 5, 6, 7, 8]


def test_hard_cap_ranks_stragglers_by_progress():
    entrants = [_entrant(n) for n in range(1, 9)]
    race = _scripted_race(entrants)
    for entrant, position in zip(entrants, (0.1, 0.8, 0.3, 0.7, 0.2, 0.6, 0.4, 0.5)):
        entrant.position = position

    while race.state is RaceState.RACING:
        race.step()

    assert race.clock_ms == SETTINGS.hard_cap_ms
    assert race.finishing_order() == [2, 4, 6, 8, 7, 3, 5, 1]
    assert all(e.finished and e.forced_finish for e in entrants)
    assert race.winner.number == 2
    winners = [a for a in race.drain_announcements() if a.kind is AnnouncementKind.WINNER]
    assert [a.entrant_number for a in winners] == [2]


def test_final_late_rule_stops_at_required_finishers():
    entrants = [_entrant(n) for n in range(1, 9)]
    race = _scripted_race(entrants)
    for entrant, position in zip(entrants, (0.91, 0.92, 0.93, 0.94, 0.905, 0.5, 0.5, 0.5)):
        entrant.position = position

    while race.state is RaceState.RACING:
        race.step()

    # 95% of the race is first reached on tick 594 (9504ms).
    forced = [e.number for e in entrants if e.forced_finish]
    assert sorted(forced) == [1, 2, 3, 4]
    assert all(e.finish_time == 9504 for e in entrants[:4])
    assert entrants[4].finished is False
    assert entrants[4].finish_time == pytest.approx(10000 + 0.095 * 1000)
    assert race.finishing_order() == [4, 3, 2, 1, 5, 6, 7, 8]


def test_uneven_tick_width_stops_exactly_at_cap():
    settings = RaceSettings(tick_ms=17)
    entrants = [_entrant(n) for n in range(1, 9)]
    race = _scripted_race(entrants, settings=settings)
    for entrant, position in zip(entrants, (0.1, 0.8, 0.3, 0.7, 0.2, 0.6, 0.4, 0.5)):
        entrant.position = position

    while race.state is RaceState.RACING:
        race.step()

    assert race.tick == 589
    assert race.clock_ms == settings.hard_cap_ms
    assert race.finishing_order()[0] == 2


@pytest.mark.parametrize("seed", range(6))
def test_seeded_race_with_uneven_tick_width_respects_cap(seed):
    settings = RaceSettings(tick_ms=17)
    race = _seeded_race(seed, settings=settings)
    race.run_until_finished()
    assert race.clock_ms <= settings.hard_cap_ms
    assert sum(1 for e in race.entrants if e.finished) >= settings.required_finishers


def test_setback_never_pushes_below_start():
    entrants = [_entrant(n) for n in range(1, 9)]
    race = _scripted_race(entrants)
    entrants[0].position = 0.001

    event = race.event_engine.trigger_event(entrants[0], InRaceEventType.TRIP, race.clock_ms)
    race._apply_impulse(entrants[0], event)

    assert entrants[0].position == 0.0


def test_burst_never_carries_over_the_line():
    entrants = [_entrant(n) for n in range(1, 9)]
    race = _scripted_race(entrants)
    entrants[0].position = 0.998

    event = race.event_engine.trigger_event(entrants[0], InRaceEventType.BURST_OF_SPEED, race.clock_ms)
    race._apply_impulse(entrants[0], event)

    assert 0.998 < entrants[0].position < SETTINGS.finish_threshold
    assert entrants[0].finished is False
    assert race.winner is None


def test_update_runs_whole_fixed_steps_only():
    race = _scripted_race([_entrant(n) for n in range(1, 9)])
    race.start_ms = 1000.0

    frame = race.update(now_ms=1000.0 + 16 * 10 + 5)
    assert frame.tick == 10
    assert frame.time_ms == 160

    assert race.update(now_ms=1000.0 + 16 * 10 + 15).tick == 10
    assert race.update(now_ms=500.0).tick == 10


def test_telemetry_keeps_sampled_and_final_frames():
    collector = TelemetryCollector(every_n_ticks=50)
    race = _seeded_race(11, telemetry=collector)
    race.run_until_finished()

    frames = collector.export()
    assert frames[-1].state == "finished"
    assert all(f.tick % 50 == 0 for f in frames[:-1])
    assert len(frames[-1].entrants) == 8


def test_reset_returns_to_waiting():
    race = _seeded_race(2)
    race.run_until_finished()
    race.reset()

    assert race.state is RaceState.WAITING
    assert race.winner is None
    assert all(e.position == 0.0 and not e.finished for e in race.entrants)
    race.run_until_finished()
    assert race.state is RaceState.FINISHED
