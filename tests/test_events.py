import pytest

from ostrich_races.engine.data_models import Entrant, TimeOfDay
from ostrich_races.engine.events import (
    ChainGeometry,
    EventEngine,
    InRaceEventType,
    PreRaceEventType,
    event_severity,
)
from ostrich_races.engine.roster import ENTRANT_POOL


class ScriptedRng:
    """Returns queued values, then ``fallback`` forever."""

    def __init__(self, values=(), fallback=0.99):
        self.values = list(values)
        self.fallback = fallback
        self.calls = 0

    def next(self):
        self.calls += 1
        if self.values:
            return self.values.pop(0)
        return self.fallback

    def next_float(self, min_value, max_value):
        return min_value + (max_value - min_value) * self.next()

    def next_int(self, min_value, max_value):
        return int(self.next_float(min_value, max_value + 1))


def _entrant(number, position=0.0, speed=1.0, stamina=1.0, consistency=1.0):
    entrant = Entrant(
        number=number,
        scheme=ENTRANT_POOL[number - 1],
        base_speed=speed,
        stamina=stamina,
        consistency=consistency,
        preferred_time=TimeOfDay.DAY,
    )
    entrant.position = position
    return entrant


def _engine(rng, **kwargs):
    kwargs.setdefault("event_cutoff", 0.95)
    kwargs.setdefault("check_interval_ticks", 60)
    kwargs.setdefault("tick_ms", 16)
    kwargs.setdefault("max_concurrent", 1)
    return EventEngine(rng, geometry=ChainGeometry(), **kwargs)


def test_pre_race_roll_takes_first_hit_only():
    # Entrant 1 rolls under Sick straight away; entrant 2 misses all five.
    rng = ScriptedRng([0.01, 0.5, 0.5, 0.5, 0.5, 0.5])
    engine = _engine(rng)
    events = engine.generate_pre_race_events([_entrant(1), _entrant(2)])
    assert events == {1: PreRaceEventType.SICK}
    assert rng.calls == 6


def test_pre_race_modifiers_apply_once():
    engine = _engine(ScriptedRng([0.01]))
    entrant = _entrant(1, speed=1.0, stamina=1.0)
    engine.generate_pre_race_events([entrant])

    assert engine.apply_pre_race_modifiers(entrant) is True
    assert entrant.base_speed == pytest.approx(0.80)
    assert entrant.stamina == pytest.approx(0.85)

    assert engine.apply_pre_race_modifiers(entrant) is False
    assert entrant.base_speed == pytest.approx(0.80)


def test_restored_events_do_not_draw_or_reapply():
    rng = ScriptedRng()
    engine = _engine(rng)
    entrant = _entrant(4, speed=0.9)
    engine.restore_pre_race_events({4: PreRaceEventType.TIRED}, modifiers_applied=True)
    assert engine.apply_all_pre_race_modifiers([entrant]) == 0
    assert entrant.base_speed == 0.9
    assert rng.calls == 0


def test_no_rolls_past_cutoff_or_off_check_tick():
    rng = ScriptedRng(fallback=0.0)
    engine = _engine(rng)
    assert engine.check_for_event(_entrant(1, position=0.96), 0) is None
    assert engine.check_for_event(_entrant(1, position=0.5), 16) is None
    assert rng.calls == 0


def test_check_tick_roll_triggers_first_event_in_order():
    engine = _engine(ScriptedRng([0.0]))
    event = engine.check_for_event(_entrant(1, position=0.3), 0)
    assert event.event_type is InRaceEventType.TRIP
    assert engine.get_active_event(1) is event


def test_global_cap_blocks_second_incident():
    engine = _engine(ScriptedRng(fallback=0.0))
    assert engine.check_for_event(_entrant(1, position=0.3), 0) is not None
    assert engine.check_for_event(_entrant(2, position=0.3), 0) is None


def test_events_expire_after_duration():
    engine = _engine(ScriptedRng([0.0]))
    engine.check_for_event(_entrant(1, position=0.3), 0)
    assert engine.expire_events(199) == []
    assert engine.expire_events(200) == [1]
    assert engine.get_active_event(1) is None


def test_propelled_spin_out_pushes_forward():
    engine = _engine(ScriptedRng([0.0]))
    event = engine.trigger_event(_entrant(1), InRaceEventType.SPIN_OUT, 0)
    assert event.propelled is True
    assert event.speed_multiplier == 1.0
    assert event.position_delta == pytest.approx(0.005)


def test_plain_spin_out_slows_down():
    engine = _engine(ScriptedRng([0.9]))
    event = engine.trigger_event(_entrant(1), InRaceEventType.SPIN_OUT, 0)
    assert event.propelled is False
    assert event.speed_multiplier == 0.70
    assert event.position_delta == pytest.approx(-0.005)


def test_chain_reaction_reaches_adjacent_lane_once():
    engine = _engine(ScriptedRng(fallback=0.0))
    source = _entrant(1, position=0.5)
    neighbour = _entrant(2, position=0.5)
    far_lane = _entrant(3, position=0.5)
    far_lane_2 = _entrant(4, position=0.5)
    entrants = [source, neighbour, far_lane, far_lane_2]
    engine.trigger_event(source, InRaceEventType.TRIP, 0)

    reactions = engine.check_chain_reactions(entrants)
    assert len(reactions) == 1
    assert reactions[0].entrant is neighbour
    assert reactions[0].source is source
    assert reactions[0].event_type is InRaceEventType.TRIP

    assert engine.check_chain_reactions(entrants) == []


def test_burst_of_speed_never_chains():
    engine = _engine(ScriptedRng(fallback=0.0))
    source = _entrant(1, position=0.5)
    engine.trigger_event(source, InRaceEventType.BURST_OF_SPEED, 0)
    assert engine.check_chain_reactions([source, _entrant(2, position=0.5)]) == []


def test_chain_ignores_entrants_out_of_reach():
    engine = _engine(ScriptedRng(fallback=0.0))
    source = _entrant(1, position=0.5)
    ahead = _entrant(2, position=0.6)
    engine.trigger_event(source, InRaceEventType.STUMBLE, 0)
    assert engine.check_chain_reactions([source, ahead]) == []


def test_severity_scales_with_resilience():
    assert event_severity(_entrant(1, stamina=1.0, consistency=1.0)) == 0.5
    assert event_severity(_entrant(1, stamina=0.0, consistency=0.0)) == 1.0


class WideGeometry(ChainGeometry):
    """Lets contact reach two lanes over so a third candidate is in range."""

    def reach(self, lane_diff):
        return 0.2 if lane_diff <= 2 else None


def test_chain_falls_through_to_second_closest():
    rng = ScriptedRng([0.99, 0.0])
    engine = _engine(rng)
    inside = _entrant(1, position=0.5)
    source = _entrant(2, position=0.5)
    outside = _entrant(3, position=0.51)
    engine.trigger_event(source, InRaceEventType.TRIP, 0)

    reactions = engine.check_chain_reactions([inside, source, outside])
    assert [r.entrant for r in reactions] == [outside]
    assert rng.calls == 2
    assert engine.get_active_event(2).has_propagated is True


def test_chain_rolls_at_most_two_candidates():
    rng = ScriptedRng([0.99, 0.99, 0.0])
    engine = _engine(rng)
    far = _entrant(1, position=0.5)
    near = _entrant(2, position=0.5)
    source = _entrant(3, position=0.5)
    next_lane = _entrant(4, position=0.51)
    entrants = [far, near, source, next_lane]
    engine.trigger_event(source, InRaceEventType.STUMBLE, 0)

    assert engine.check_chain_reactions(entrants, geometry=WideGeometry()) == []
    assert rng.calls == 2
    # Still unspread, so the source rolls again on the next tick.
    assert engine.get_active_event(3).has_propagated is False
    assert len(engine.check_chain_reactions(entrants, geometry=WideGeometry())) == 1
