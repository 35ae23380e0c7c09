import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from ostrich_races.betting_service import ZERO, BetKind, ExoticKind, to_money
from ostrich_races.config import get_config, get_money
from ostrich_races.engine.data_models import Entrant
from ostrich_races.engine.events import PreRaceEventType

# Rough performance hit of each condition, used to shade posted odds.
EVENT_IMPACT = {
    PreRaceEventType.SICK: -0.35,
    PreRaceEventType.TIRED: -0.25,
    PreRaceEventType.MUDDY: -0.15,
    PreRaceEventType.NERVOUS: -0.05,
    PreRaceEventType.ENERGIZED: 0.10,
}
SEVERE_EVENTS = {PreRaceEventType.SICK, PreRaceEventType.TIRED}

BET_AMOUNT = get_money("bot.bet_amount", 1000000)
MAX_ODDS = get_config("bot.max_odds", 8)
MAX_BETS = get_config("bot.max_bets", 2)
ACCURACY_WINDOW = get_config("bot.accuracy_window", 100)
SUPERFECTA_THRESHOLDS = get_config("bot.superfecta_thresholds", [2, 3, 4, 6])
TRIFECTA_THRESHOLDS = get_config("bot.trifecta_thresholds", [2.5, 4, 5])
EXACTA_THRESHOLDS = get_config("bot.exacta_thresholds", [4, 6])
QUINELLA_THRESHOLDS = get_config("bot.quinella_thresholds", [6, 7])

ALL_KINDS = [kind.value for kind in BetKind] + [kind.value for kind in ExoticKind]


class StaticRecommendations:
    """
    Fixed recommendation feed.

    Any object with ``recommended_entrants()`` and ``recommended_exotics(number)``
    can stand in for this one.
    """

    def __init__(self, entrants: Sequence[int] = (), exotics: Optional[Dict[int, Sequence[ExoticKind]]] = None):
        self.entrants = list(entrants)
        self.exotics = {number: list(kinds) for number, kinds in (exotics or {}).items()}

    def recommended_entrants(self) -> List[int]:
        return list(self.entrants)

    def recommended_exotics(self, number: int) -> List[ExoticKind]:
        return list(self.exotics.get(number, []))


@dataclass
class KindStats:
    bets: int = 0
    wins: int = 0
    profit: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {"bets": self.bets, "wins": self.wins, "profit": str(self.profit)}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "KindStats":
        return KindStats(
            bets=int(data.get("bets", 0)),
            wins=int(data.get("wins", 0)),
            profit=to_money(data.get("profit", 0)),
        )


@dataclass
class BotStats:
    total_races: int = 0
    total_bets: int = 0
    total_wins: int = 0
    total_losses: int = 0
    total_profit: Decimal = ZERO
    bet_type_stats: Dict[str, KindStats] = field(default_factory=lambda: {kind: KindStats() for kind in ALL_KINDS})
    entrant_stats: Dict[int, KindStats] = field(default_factory=dict)
    recommendation_history: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_races": self.total_races,
            "total_bets": self.total_bets,
            "total_wins": self.total_wins,
            "total_losses": self.total_losses,
            "total_profit": str(self.total_profit),
            "bet_type_stats": {kind: stats.to_dict() for kind, stats in self.bet_type_stats.items()},
            "entrant_stats": {str(number): stats.to_dict() for number, stats in self.entrant_stats.items()},
            "recommendation_history": list(self.recommendation_history),
        }

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]]) -> "BotStats":
        stats = BotStats()
        if not data:
            return stats
        stats.total_races = int(data.get("total_races", 0))
        stats.total_bets = int(data.get("total_bets", 0))
        stats.total_wins = int(data.get("total_wins", 0))
        stats.total_losses = int(data.get("total_losses", 0))
        stats.total_profit = to_money(data.get("total_profit", 0))
        for kind, entry in (data.get("bet_type_stats") or {}).items():
            stats.bet_type_stats[kind] = KindStats.from_dict(entry)
        for number, entry in (data.get("entrant_stats") or {}).items():
            stats.entrant_stats[int(number)] = KindStats.from_dict(entry)
        stats.recommendation_history = list(data.get("recommendation_history") or [])[-ACCURACY_WINDOW:]
        return stats


@dataclass
class RankedEntrant:
    entrant: Entrant
    event: Optional[PreRaceEventType]
    impact: float
    effective_odds: float

    @property
    def severe(self) -> bool:
        return self.event in SEVERE_EVENTS


class BettingBot:
    """
    Autonomous bettor sitting at a GameSession.

    Follows the recommendation feed when it has picks, otherwise falls back to
    a conservative favourites strategy. Its statistics are bookkeeping only.
    """

    def __init__(self, session, provider=None, bet_amount=None, stats: Optional[BotStats] = None, verbose: bool = True):
        self.session = session
        self.provider = provider
        self.bet_amount = to_money(BET_AMOUNT if bet_amount is None else bet_amount)
        self.stats = stats or BotStats()
        self.verbose = verbose
        self.enabled = True
        self._placed_this_race = False
        self._recommended_this_race: List[int] = []
        session.settlement_listeners.append(self.record_race_results)

    def _log(self, message: str) -> None:
        if self.verbose:
            print(f"[Bot] {message}")

    # --- Placing bets ---

    def place_bets(self) -> int:
        """Places this race's bets. Returns how many wagers were accepted."""
        if not self.enabled:
            return 0
        recommended = self.provider.recommended_entrants() if self.provider else []
        roster = {entrant.number for entrant in self.session.entrants}
        recommended = [number for number in recommended if number in roster]

        if recommended:
            self._log(f"Following recommendations: {recommended}")
            placed = self._place_recommended(recommended)
        else:
            self._log("No recommendations available, using conservative strategy.")
            placed = self.place_conservative_bets()

        self.stats.total_races += 1
        self._placed_this_race = True
        self._recommended_this_race = recommended
        return placed

    def _place_recommended(self, recommended: List[int]) -> int:
        placed = 0
        for number in recommended:
            kinds = self.provider.recommended_exotics(number) if self.provider else []
            if kinds:
                for kind in kinds:
                    picks = self._fill_picks(number, kind, recommended)
                    if picks and self.place_exotic(kind, picks):
                        placed += 1
            elif self.place_regular(number, BetKind.WIN):
                placed += 1
        return placed

    def _fill_picks(self, lead: int, kind: ExoticKind, recommended: Sequence[int]) -> Optional[List[int]]:
        picks = [lead]
        others = [n for n in recommended if n != lead]
        others += [e.number for e in self.session.entrants if e.number != lead and e.number not in others]
        for number in others:
            if len(picks) >= kind.picks_required:
                break
            picks.append(number)
        if len(picks) < kind.picks_required:
            self._log(f"Cannot place {kind.value}: not enough entrants for picks.")
            return None
        return picks

    def rank_entrants(self) -> List[RankedEntrant]:
        ranked = []
        for entrant in self.session.entrants:
            event = self.session.pre_race_event(entrant.number)
            impact = EVENT_IMPACT.get(event, 0.0) if event else 0.0
            ranked.append(RankedEntrant(entrant, event, impact, max(0.1, entrant.odds - impact * 10)))
        ranked.sort(key=lambda r: r.effective_odds)
        return ranked

    def place_conservative_bets(self) -> int:
        viable = [r for r in self.rank_entrants() if not r.severe]
        if not viable:
            self._log("No viable entrants; every one carries a severe condition.")
            return 0

        placed = 0
        regular = 0
        for ranked in viable:
            if regular >= MAX_BETS or ranked.entrant.odds > MAX_ODDS:
                break
            kind = BetKind.WIN if regular == 0 else BetKind.PLACE
            if self.place_regular(ranked.entrant.number, kind):
                regular += 1
        placed += regular

        top = viable[:4]
        odds = [r.entrant.odds for r in top]
        numbers = [r.entrant.number for r in top]

        def _under(thresholds) -> bool:
            return len(odds) >= len(thresholds) and all(o <= t for o, t in zip(odds, thresholds))

        def _clean(count: int) -> bool:
            return not any(r.severe for r in top[:count])

        if _under(SUPERFECTA_THRESHOLDS):
            if _clean(4) and self.place_exotic(ExoticKind.SUPERFECTA, numbers[:4]):
                placed += 1
        elif _under(TRIFECTA_THRESHOLDS):
            if _clean(3) and self.place_exotic(ExoticKind.TRIFECTA, numbers[:3]):
                placed += 1

        exacta_pair = None
        if _under(EXACTA_THRESHOLDS) and _clean(2):
            if self.place_exotic(ExoticKind.EXACTA, numbers[:2]):
                placed += 1
                exacta_pair = set(numbers[:2])

        if _under(QUINELLA_THRESHOLDS) and _clean(2) and exacta_pair != set(numbers[:2]):
            if self.place_exotic(ExoticKind.QUINELLA, numbers[:2]):
                placed += 1

        if placed == 0:
            self._log("No conservative bets placed; odds too long or conditions too poor.")
        return placed

    def place_regular(self, number: int, kind: BetKind) -> bool:
        result = self.session.place_bet(number, self.bet_amount, kind)
        if not result.success:
            self._log(f"{kind.value.upper()} on #{number} refused: {result.message}")
            return False
        self.stats.total_bets += 1
        self.stats.bet_type_stats[kind.value].bets += 1
        self.stats.entrant_stats.setdefault(number, KindStats()).bets += 1
        self._log(f"Placed {kind.value.upper()} on #{number} for {self.bet_amount}")
        return True

    def place_exotic(self, kind: ExoticKind, picks: Sequence[int]) -> bool:
        before = len(self.session.exotics.exotic_bets)
        result = self.session.place_exotic_bet(kind, picks, self.bet_amount)
        if not result.success:
            self._log(f"{kind.value.upper()} {list(picks)} refused: {result.message}")
            return False
        # A consolidated stake is not a new bet.
        if len(self.session.exotics.exotic_bets) > before:
            self.stats.total_bets += 1
            self.stats.bet_type_stats[kind.value].bets += 1
        self._log(f"Placed {result.bet.describe()} for {self.bet_amount}")
        return True

    # --- Results ---

    def record_race_results(self, settlement) -> None:
        if not self._placed_this_race:
            return
        self._placed_this_race = False
        winner = settlement.order[0]
        recommended = self._recommended_this_race

        self.stats.recommendation_history.append({
            "race": self.stats.total_races,
            "recommended_winner": winner in recommended,
            "actual_winner": winner,
            "recommended": list(recommended),
        })
        del self.stats.recommendation_history[:-ACCURACY_WINDOW]

        outcomes = [(o.kind.value, o.won, o.profit) for o in settlement.simple.results]
        outcomes += [(o.bet.kind.value, o.won, o.profit) for o in settlement.exotic.results]
        for kind, won, profit in outcomes:
            kind_stats = self.stats.bet_type_stats.setdefault(kind, KindStats())
            if won:
                kind_stats.wins += 1
                self.stats.total_wins += 1
            else:
                self.stats.total_losses += 1
            kind_stats.profit += profit
            self.stats.total_profit += profit

        for outcome in settlement.simple.results:
            entrant_stats = self.stats.entrant_stats.setdefault(outcome.entrant, KindStats())
            entrant_stats.profit += outcome.profit

        for number in recommended:
            if number in settlement.order and settlement.order.index(number) < 3:
                self.stats.entrant_stats.setdefault(number, KindStats()).wins += 1

    def recommendation_accuracy(self) -> float:
        history = self.stats.recommendation_history
        if not history:
            return 0.0
        correct = sum(1 for entry in history if entry["recommended_winner"])
        return correct / len(history) * 100

    def win_rate(self, kind: str) -> float:
        stats = self.stats.bet_type_stats.get(kind)
        if not stats or stats.bets == 0:
            return 0.0
        return stats.wins / stats.bets * 100

    def best_bet_type(self) -> Optional[str]:
        best = None
        best_profit = None
        for kind, stats in self.stats.bet_type_stats.items():
            if best_profit is None or stats.profit > best_profit:
                best, best_profit = kind, stats.profit
        return best

    def reset_stats(self) -> None:
        self.stats = BotStats()

    # --- Full auto ---

    async def auto_run(
        self,
        races: int,
        seed: Optional[int] = None,
        delay: Optional[float] = None,
        headless: bool = False,
        **play_kwargs,
    ) -> List[Any]:
        """
        Plays ``races`` races back to back: new roster, bets, race, settlement.
        With ``headless`` each race is simulated straight through instead of in
        real time. Extra keyword arguments go to ``GameSession.play_race``.
        """
        if delay is None:
            delay = get_config("bot.auto_delay_seconds", 2.0)
        settlements = []
        for index in range(races):
            race_seed = seed + index if seed is not None else None
            self.session.new_race(seed=race_seed, time_of_day=self.session.time_of_day)
            self.place_bets()
            if headless:
                settlement = self.session.run_headless()
                await asyncio.sleep(0)
            else:
                settlement = await self.session.play_race(**play_kwargs)
            settlements.append(settlement)
            self._log(
                f"Race {index + 1}/{races}: winner #{settlement.winner}, "
                f"profit {settlement.combined_profit}, bankroll {settlement.bankroll}"
            )
            if index < races - 1 and delay > 0:
                await asyncio.sleep(delay)
        return settlements
