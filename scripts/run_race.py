"""
Utility script to run a single ostrich race headless.

Usage:
    python scripts/run_race.py --seed 42 --time-of-day morning
    python scripts/run_race.py --seed 42 --monte-carlo 500 --silent

With --monte-carlo the bookie replays the same field many times and prints
its win estimates next to the posted odds.
"""

from __future__ import annotations

import argparse
import os
import sys

# Ensure repo root is on sys.path when script is executed from anywhere
REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if REPO_ROOT not in sys.path:
    sys.path.append(REPO_ROOT)

from ostrich_races.bookie import Bookie  # noqa: E402
from ostrich_races.engine.data_models import TimeOfDay  # noqa: E402
from ostrich_races.session import GameSession  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="Run an ostrich race simulation.")
    parser.add_argument("--seed", type=int, default=None, help="Seed for a reproducible race.")
    parser.add_argument(
        "--time-of-day",
        choices=[tod.value for tod in TimeOfDay],
        default=None,
        help="Race time of day (defaults to the current hour).",
    )
    parser.add_argument(
        "--monte-carlo",
        type=int,
        default=0,
        metavar="N",
        help="Also run N bookie simulations of the same field.",
    )
    parser.add_argument("--silent", action="store_true", help="Suppress per-race console output.")
    args = parser.parse_args()

    session = GameSession(verbose=not args.silent)
    tod = TimeOfDay.from_str(args.time_of_day) if args.time_of_day else None
    entrants = session.new_race(seed=args.seed, time_of_day=tod)

    bookie_odds = {}
    if args.monte_carlo > 0:
        bookie = Bookie(entrants, settings=session.settings, verbose=not args.silent)
        bookie.run_monte_carlo(args.monte_carlo, seed=args.seed)
        bookie_odds = bookie.win_probabilities

    if not args.silent:
        print(f"\nRace {session.race_id} ({session.time_of_day.value})")
        for entrant in entrants:
            event = session.pre_race_event(entrant.number)
            condition = f" [{event.value}]" if event else ""
            estimate = ""
            if entrant.number in bookie_odds:
                estimate = f"  bookie {bookie_odds[entrant.number] * 100:5.1f}%"
            print(f"  #{entrant.number} {entrant.name:<20} {entrant.odds:>2}-1{estimate}{condition}")

    settlement = session.run_headless()

    if args.silent:
        print(f"Race {session.race_id} completed. Winner #{settlement.winner}.")
    else:
        print("\nFinish Order:")
        for idx, number in enumerate(settlement.order, start=1):
            entrant = session.get_entrant(number)
            forced = " (forced)" if entrant.forced_finish else ""
            print(f"{idx}. {entrant.name} (#{number}){forced}")


if __name__ == "__main__":
    main()
