from __future__ import annotations

from copy import deepcopy
from typing import Dict, List, Optional, Sequence

import numpy as np

from ostrich_races.config import get_config
from ostrich_races.engine.data_models import Entrant
from ostrich_races.engine.events import EventEngine
from ostrich_races.engine.race_loop import Race, RaceSettings
from ostrich_races.engine.rng import SeededRandom, UnseededRandom

MAX_FAIR_ODDS = 999.0
MIN_FAIR_ODDS = 0.1


class Bookie:
    """
    Estimates how often each entrant wins by replaying the race many times.

    The posted odds are the fixed bucket odds from the roster. The bookie's
    numbers are advisory only and never feed settlement.
    """

    def __init__(self, entrants: Sequence[Entrant], settings: Optional[RaceSettings] = None, verbose: bool = True):
        self.entrants = list(entrants)
        self.settings = settings or RaceSettings.from_config()
        self.verbose = verbose
        self.win_probabilities: Dict[int, float] = {}
        self.top_four_probabilities: Dict[int, float] = {}
        self.fair_odds: Dict[int, float] = {}

    def _rng_for(self, run: int, seed: Optional[int]):
        if seed is None:
            return UnseededRandom()
        return SeededRandom(seed + run)

    def run_monte_carlo(self, simulations: Optional[int] = None, seed: Optional[int] = None) -> Dict[int, float]:
        """
        Runs ``simulations`` headless races and returns win probability per entrant.
        With ``seed`` the whole batch is reproducible.
        """
        if simulations is None:
            simulations = get_config("bookie.simulations", 500)
        if self.verbose:
            print(f"\nBookie: Running {simulations} Monte Carlo simulations...")
        if not self.entrants or simulations <= 0:
            if self.verbose:
                print("Bookie: Simulation cancelled, nothing to simulate.")
            return {}

        numbers: List[int] = [entrant.number for entrant in self.entrants]
        index = {number: i for i, number in enumerate(numbers)}
        wins = np.zeros(len(numbers), dtype=np.int64)
        top_four = np.zeros(len(numbers), dtype=np.int64)

        for run in range(simulations):
            rng = self._rng_for(run, seed)
            field = deepcopy(self.entrants)
            race = Race(
                field,
                event_engine=EventEngine(rng, tick_ms=self.settings.tick_ms),
                rng=rng,
                settings=self.settings,
            )
            order = race.run_until_finished()
            wins[index[order[0]]] += 1
            for number in order[: self.settings.required_finishers]:
                top_four[index[number]] += 1

        win_rates = wins / simulations
        self.win_probabilities = {number: float(win_rates[i]) for i, number in enumerate(numbers)}
        self.top_four_probabilities = {
            number: float(top_four[i] / simulations) for i, number in enumerate(numbers)
        }
        if self.verbose:
            print("Monte Carlo complete. Calculating odds...")
        self._calculate_all_odds()
        return self.win_probabilities

    def _calculate_odds_from_win_rate(self, win_rate: float) -> float:
        house_vig = get_config("bookie.house_vig", 0.08)
        if win_rate <= 0:
            return MAX_FAIR_ODDS
        fair_odds = (1 / win_rate) - 1
        final_odds = fair_odds * (1 - house_vig)
        return float(np.clip(final_odds, MIN_FAIR_ODDS, MAX_FAIR_ODDS))

    def _calculate_all_odds(self) -> None:
        self.fair_odds = {
            number: round(self._calculate_odds_from_win_rate(rate), 2)
            for number, rate in self.win_probabilities.items()
        }

    def favourite(self) -> Optional[int]:
        if not self.win_probabilities:
            return None
        return max(self.win_probabilities, key=self.win_probabilities.get)
