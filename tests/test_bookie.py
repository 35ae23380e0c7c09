import pytest

from ostrich_races.bookie import MAX_FAIR_ODDS, MIN_FAIR_ODDS, Bookie
from ostrich_races.engine.data_models import TimeOfDay
from ostrich_races.engine.rng import SeededRandom
from ostrich_races.engine.roster import initialize_roster


def _field(seed=17):
    return initialize_roster(TimeOfDay.DAY, SeededRandom(seed))


def test_monte_carlo_probabilities_cover_the_field():
    entrants = _field()
    bookie = Bookie(entrants, verbose=False)
    probabilities = bookie.run_monte_carlo(40, seed=5)

    assert set(probabilities) == {e.number for e in entrants}
    assert sum(probabilities.values()) == pytest.approx(1.0)
    assert all(0.0 <= p <= 1.0 for p in bookie.top_four_probabilities.values())
    assert sum(bookie.top_four_probabilities.values()) == pytest.approx(4.0)
    assert bookie.favourite() in probabilities


def test_seeded_batches_repeat():
    first = Bookie(_field(), verbose=False).run_monte_carlo(25, seed=9)
    second = Bookie(_field(), verbose=False).run_monte_carlo(25, seed=9)
    assert first == second


def test_simulation_leaves_the_field_untouched():
    entrants = _field()
    before = [e.to_dict() for e in entrants]
    Bookie(entrants, verbose=False).run_monte_carlo(10, seed=1)
    assert [e.to_dict() for e in entrants] == before
    assert all(e.position == 0.0 and not e.finished for e in entrants)


def test_odds_from_win_rate():
    bookie = Bookie(_field(), verbose=False)
    assert bookie._calculate_odds_from_win_rate(0.0) == MAX_FAIR_ODDS
    assert bookie._calculate_odds_from_win_rate(0.5) == pytest.approx(0.92)
    assert bookie._calculate_odds_from_win_rate(1.0) == MIN_FAIR_ODDS


def test_nothing_to_simulate():
    bookie = Bookie(_field(), verbose=False)
    assert bookie.run_monte_carlo(0) == {}
    assert bookie.favourite() is None
