from __future__ import annotations

import asyncio
import inspect
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence

from ostrich_races.betting_service import (
    ZERO,
    BetKind,
    BetResult,
    BettingSystem,
    ExoticBettingSystem,
    ExoticKind,
    InvalidWager,
    SettlementContractError,
    SettlementSummary,
    WagerRefusal,
    to_money,
)
from ostrich_races.config import get_config, get_money
from ostrich_races.engine.data_models import Entrant, RaceState, TimeOfDay
from ostrich_races.engine.events import EventEngine, PreRaceEventType, PRE_RACE_EVENTS
from ostrich_races.engine.race_loop import Race, RaceSettings, RaceStateError
from ostrich_races.engine.rng import SeededRandom, resolve_rng
from ostrich_races.engine.roster import find_scheme, initialize_roster, odds_map

STARTING_BANKROLL = get_money("economy.starting_bankroll", 1000000)
BAILOUT_AMOUNT = get_money("economy.bailout_amount", 1000000)
MIN_WINDOW_MS = get_config("network.min_window_ms", 30000)
MAX_WINDOW_MS = get_config("network.max_window_ms", 180000)


@dataclass
class PlayerStats:
    races_watched: int = 0
    total_wins: int = 0
    total_losses: int = 0
    biggest_win: Decimal = ZERO
    biggest_loss: Decimal = ZERO
    bailouts: int = 0

    def record(self, combined_profit: Decimal) -> None:
        self.races_watched += 1
        if combined_profit > ZERO:
            self.total_wins += 1
            self.biggest_win = max(self.biggest_win, combined_profit)
        else:
            self.total_losses += 1
            self.biggest_loss = max(self.biggest_loss, abs(combined_profit))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "races_watched": self.races_watched,
            "total_wins": self.total_wins,
            "total_losses": self.total_losses,
            "biggest_win": str(self.biggest_win),
            "biggest_loss": str(self.biggest_loss),
            "bailouts": self.bailouts,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PlayerStats":
        if not data:
            return cls()
        return cls(
            races_watched=int(data.get("races_watched", 0)),
            total_wins=int(data.get("total_wins", 0)),
            total_losses=int(data.get("total_losses", 0)),
            biggest_win=to_money(data.get("biggest_win", 0)),
            biggest_loss=to_money(data.get("biggest_loss", 0)),
            bailouts=int(data.get("bailouts", 0)),
        )


@dataclass
class RaceSettlement:
    order: List[int]
    winner: int
    simple: SettlementSummary
    exotic: SettlementSummary
    total_winnings: Decimal
    total_staked: Decimal
    bankroll: Decimal
    stats: PlayerStats
    desync: bool = False
    local_order: Optional[List[int]] = None

    @property
    def combined_profit(self) -> Decimal:
        return self.total_winnings - self.total_staked


@dataclass
class RaceParameters:
    """Everything a joining peer needs to rebuild the host's race."""

    race_id: str
    seed: Optional[int]
    rng_state: Optional[int]
    timestamp: float
    time_of_day: Optional[TimeOfDay]
    entrants: List[Dict[str, Any]] = field(default_factory=list)
    pre_race_events: Dict[int, PreRaceEventType] = field(default_factory=dict)
    modifiers_applied: bool = True
    betting_window_start: Optional[float] = None
    min_window_ms: float = MIN_WINDOW_MS
    max_window_ms: float = MAX_WINDOW_MS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "race_id": self.race_id,
            "seed": self.seed,
            "rng_state": self.rng_state,
            "timestamp": self.timestamp,
            "time_of_day": self.time_of_day.value if self.time_of_day else None,
            "entrants": [dict(entry) for entry in self.entrants],
            "pre_race_events": {
                str(number): {"type": event.value, "label": PRE_RACE_EVENTS[event].label}
                for number, event in self.pre_race_events.items()
            },
            "modifiers_applied": self.modifiers_applied,
            "betting_window_start": self.betting_window_start,
            "min_window_ms": self.min_window_ms,
            "max_window_ms": self.max_window_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RaceParameters":
        try:
            time_of_day = data.get("time_of_day")
            return cls(
                race_id=str(data["race_id"]),
                seed=data.get("seed"),
                rng_state=data.get("rng_state"),
                timestamp=float(data.get("timestamp", 0)),
                time_of_day=TimeOfDay.from_str(time_of_day) if time_of_day else None,
                entrants=list(data["entrants"]),
                pre_race_events={
                    int(number): PreRaceEventType.from_str(entry["type"])
                    for number, entry in (data.get("pre_race_events") or {}).items()
                },
                modifiers_applied=bool(data.get("modifiers_applied", True)),
                betting_window_start=data.get("betting_window_start"),
                min_window_ms=data.get("min_window_ms", MIN_WINDOW_MS),
                max_window_ms=data.get("max_window_ms", MAX_WINDOW_MS),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"Malformed race parameters: {exc}") from exc


async def _maybe_await(result) -> None:
    if inspect.isawaitable(result):
        await result


class GameSession:
    """
    One player's table: bankroll, lifetime stats, the current race and its bets.

    The session never touches storage. Callers read ``bankroll`` and
    ``stats`` after a settlement and persist them however they like.
    """

    def __init__(
        self,
        bankroll=None,
        stats: Optional[PlayerStats] = None,
        settings: Optional[RaceSettings] = None,
        clock: Optional[Callable[[], float]] = None,
        bailout_amount=None,
        verbose: bool = False,
    ):
        self.bankroll = to_money(STARTING_BANKROLL if bankroll is None else bankroll)
        self.stats = stats or PlayerStats()
        self.settings = settings or RaceSettings.from_config()
        self.clock = clock
        self.bailout_amount = to_money(BAILOUT_AMOUNT if bailout_amount is None else bailout_amount)
        self.verbose = verbose

        self.race_id: Optional[str] = None
        self.rng = None
        self.seed: Optional[int] = None
        self.time_of_day: Optional[TimeOfDay] = None
        self.entrants: List[Entrant] = []
        self.event_engine: Optional[EventEngine] = None
        self.race: Optional[Race] = None
        self.betting = BettingSystem()
        self.exotics = ExoticBettingSystem()
        self.last_settlement: Optional[RaceSettlement] = None
        self.settlement_listeners: List[Callable[[RaceSettlement], None]] = []
        self._settled = False
        self._bailout_this_race = False
        self._setup_rng_state: Optional[int] = None
        self._created_at = 0.0

    def _log(self, message: str) -> None:
        if self.verbose:
            print(f"[Session] {message}")

    # --- Race lifecycle ---

    @property
    def seeded(self) -> bool:
        return isinstance(self.rng, SeededRandom)

    @property
    def betting_open(self) -> bool:
        return self.race is not None and self.race.state is RaceState.WAITING and not self._settled

    def _require_race(self) -> Race:
        if self.race is None:
            raise RaceStateError("No race has been set up.")
        return self.race

    def _close_previous_race(self) -> None:
        if self.race is None or self._settled:
            return
        if self.race.state is RaceState.FINISHED:
            self.settle()
        else:
            self.abandon_race()

    def new_race(
        self,
        seed: Optional[int] = None,
        time_of_day: Optional[TimeOfDay] = None,
        race_id: Optional[str] = None,
    ) -> List[Entrant]:
        """
        Sets up a fresh roster and pre-race conditions.

        With a seed the roster, conditions and every in-race draw come from one
        shared stream. Without one the session plays offline with unseeded draws.
        """
        self._close_previous_race()

        self.rng = SeededRandom(seed) if seed is not None else resolve_rng(None)
        self.seed = self.rng.initial_seed if self.seeded else None
        self.time_of_day = time_of_day or TimeOfDay.from_hour(datetime.now().hour)
        self.race_id = race_id or uuid.uuid4().hex[:12]

        self.entrants = initialize_roster(self.time_of_day, self.rng)
        self.event_engine = EventEngine(self.rng, tick_ms=self.settings.tick_ms)
        self.event_engine.generate_pre_race_events(self.entrants)
        self.event_engine.apply_all_pre_race_modifiers(self.entrants)
        self._attach_race()

        self._log(
            f"Race {self.race_id} ready ({self.time_of_day.value}, "
            f"{'seed ' + str(self.seed) if self.seeded else 'offline'})."
        )
        return self.entrants

    def _attach_race(self) -> None:
        self.race = Race(
            self.entrants,
            event_engine=self.event_engine,
            rng=self.rng,
            settings=self.settings,
            clock=self.clock,
            verbose=self.verbose,
        )
        self.betting = BettingSystem()
        self.exotics = ExoticBettingSystem()
        self._settled = False
        self._bailout_this_race = False
        self._setup_rng_state = self.rng.seed if self.seeded else None
        self._created_at = time.time() * 1000.0

    def odds(self) -> Dict[int, int]:
        return odds_map(self.entrants)

    def get_entrant(self, number: int) -> Optional[Entrant]:
        for entrant in self.entrants:
            if entrant.number == number:
                return entrant
        return None

    def pre_race_event(self, number: int) -> Optional[PreRaceEventType]:
        if self.event_engine is None:
            return None
        return self.event_engine.get_pre_race_event(number)

    def abandon_race(self) -> Decimal:
        """Resets the race to waiting and refunds every open stake."""
        refunded = self.clear_all_bets(force=True)
        if self.race is not None:
            self.race.reset()
        if refunded:
            self._log(f"Race {self.race_id} abandoned; refunded {refunded}.")
        return refunded

    # --- Wagering ---

    def check_and_grant_bailout(self) -> bool:
        """
        Tops the bankroll up to the bailout amount when it has run low.

        Never granted before the first race has been watched, and at most once
        per race.
        """
        if self.stats.races_watched == 0 or self._bailout_this_race:
            return False
        if self.bankroll >= self.bailout_amount:
            return False
        self.bankroll = self.bailout_amount
        self.stats.bailouts += 1
        self._bailout_this_race = True
        self._log(f"Bailout granted. Bankroll reset to {self.bailout_amount}.")
        return True

    def _refuse(self, reason: WagerRefusal, message: str) -> BetResult:
        self._log(f"Bet refused ({reason.value}): {message}")
        return BetResult(False, message, reason)

    def _precheck(self, numbers: Sequence[int], amount: Decimal) -> Optional[BetResult]:
        if not self.betting_open:
            return self._refuse(WagerRefusal.BETTING_CLOSED, "Betting is closed for this race.")
        unknown = [n for n in numbers if self.get_entrant(n) is None]
        if unknown:
            return self._refuse(WagerRefusal.UNKNOWN_ENTRANT, f"No entrant numbered {unknown[0]} in this race.")
        if not amount.is_finite() or amount <= ZERO:
            return self._refuse(WagerRefusal.NON_POSITIVE_STAKE, "Bet amount must be greater than zero.")
        return None

    def place_bet(self, number: int, amount, kind: BetKind = BetKind.WIN) -> BetResult:
        amount = to_money(amount)
        refusal = self._precheck([number], amount)
        if refusal:
            return refusal

        if self.check_and_grant_bailout() and amount > self.bailout_amount:
            return self._refuse(
                WagerRefusal.BAILOUT_LIMIT,
                f"With a bailout you can only bet {self.bailout_amount} this race.",
            )
        if amount > self.bankroll:
            return self._refuse(WagerRefusal.INSUFFICIENT_FUNDS, "You don't have enough money for this bet.")

        try:
            bet = self.betting.place_bet(number, amount, kind)
        except InvalidWager as e:
            return self._refuse(e.reason, e.message)
        self.bankroll -= amount
        return BetResult(True, f"{kind.value.title()} bet on #{number} placed.", bet=bet)

    def place_exotic_bet(self, kind: ExoticKind, picks: Sequence[int], amount) -> BetResult:
        amount = to_money(amount)
        try:
            picks = ExoticBettingSystem.validate_picks(kind, picks)
        except InvalidWager as e:
            return self._refuse(e.reason, e.message)
        refusal = self._precheck(picks, amount)
        if refusal:
            return refusal

        if self.check_and_grant_bailout() and amount != self.bailout_amount:
            return self._refuse(
                WagerRefusal.BAILOUT_LIMIT,
                f"With a bailout you must bet exactly {self.bailout_amount} this race.",
            )
        if amount > self.bankroll:
            return self._refuse(WagerRefusal.INSUFFICIENT_FUNDS, "You don't have enough money for this bet.")

        try:
            bet = self.exotics.place_exotic_bet(kind, picks, amount)
        except InvalidWager as e:
            return self._refuse(e.reason, e.message)
        self.bankroll -= amount
        return BetResult(True, f"{bet.describe()} placed.", bet=bet)

    def clear_bet(self, number: int, kind: BetKind) -> BetResult:
        if not self.betting_open:
            return self._refuse(WagerRefusal.BETTING_CLOSED, "Bets are locked once the race starts.")
        bet = self.betting.clear_bet(number, kind)
        if bet is None:
            return self._refuse(WagerRefusal.NO_SUCH_BET, f"No {kind.value} bet on #{number}.")
        self.bankroll += bet.amount
        return BetResult(True, f"Refunded {bet.amount}.", bet=bet)

    def clear_exotic_bet(self, bet_id: int) -> BetResult:
        if not self.betting_open:
            return self._refuse(WagerRefusal.BETTING_CLOSED, "Bets are locked once the race starts.")
        bet = self.exotics.clear_exotic_bet(bet_id)
        if bet is None:
            return self._refuse(WagerRefusal.NO_SUCH_BET, f"No exotic bet with id {bet_id}.")
        self.bankroll += bet.amount
        return BetResult(True, f"Refunded {bet.amount}.", bet=bet)

    def clear_all_bets(self, force: bool = False) -> Decimal:
        if not force and not self.betting_open:
            return ZERO
        cleared = self.betting.clear_all_bets() + self.exotics.clear_all_exotic_bets()
        refunded = sum((bet.amount for bet in cleared), ZERO)
        self.bankroll += refunded
        return refunded

    def total_staked(self) -> Decimal:
        return self.betting.total_bet_amount() + self.exotics.total_exotic_bet_amount()

    # --- Settlement ---

    def settle(self, order: Optional[Sequence[int]] = None) -> RaceSettlement:
        """Pays out against ``order``, or the local race result when none is given."""
        race = self._require_race()
        if self._settled:
            raise RaceStateError(f"Race {self.race_id} is already settled.")
        if order is None:
            order = race.finishing_order()
        return self._settle_with(list(order))

    def _settle_with(self, order: List[int], desync: bool = False, local_order=None) -> RaceSettlement:
        simple = self.betting.calculate_payouts(order, self.odds())
        exotic = self.exotics.calculate_exotic_payouts(order)
        total_winnings = simple.total_winnings + exotic.total_winnings
        total_staked = simple.total_staked + exotic.total_staked

        self.bankroll += total_winnings
        self.stats.record(total_winnings - total_staked)
        self.betting.clear_all_bets()
        self.exotics.clear_all_exotic_bets()
        self._settled = True

        settlement = RaceSettlement(
            order=order,
            winner=order[0],
            simple=simple,
            exotic=exotic,
            total_winnings=total_winnings,
            total_staked=total_staked,
            bankroll=self.bankroll,
            stats=self.stats,
            desync=desync,
            local_order=local_order,
        )
        self.last_settlement = settlement
        self._log(
            f"Race {self.race_id} settled. Winner #{order[0]}, "
            f"profit {settlement.combined_profit}, bankroll {self.bankroll}."
        )
        for listener in self.settlement_listeners:
            listener(settlement)
        return settlement

    def handle_official_results(self, winner: int, order: Sequence[int]) -> RaceSettlement:
        """
        Settles against the host's official result.

        A local result that disagrees is reported and then ignored. There is
        no local resimulation.
        """
        race = self._require_race()
        if self._settled:
            raise RaceStateError(f"Race {self.race_id} is already settled.")
        order = list(order)
        if not order or order[0] != winner:
            raise SettlementContractError(f"Official winner #{winner} does not lead order {order}.")
        if sorted(order) != sorted(e.number for e in self.entrants):
            raise SettlementContractError(f"Official order {order} does not match the local roster.")

        local_order = race.finishing_order() if race.state is RaceState.FINISHED else None
        desync = local_order != order
        if desync:
            if local_order is None:
                print(f"[Session] Official results for race {self.race_id} arrived before the local finish.")
            else:
                print(f"[Session] Desync detected in race {self.race_id}.")
                print(f"  -> Local:  winner #{local_order[0]}, order {local_order}")
                print(f"  -> Server: winner #{winner}, order {order}")
        return self._settle_with(order, desync=desync, local_order=local_order)

    # --- Driving the race ---

    def start_race(self, start_ms: Optional[float] = None) -> None:
        """Skips the countdown pacing and starts racing straight away."""
        race = self._require_race()
        race.start_countdown()
        while race.countdown > 0:
            race.countdown_tick()
        race.start_race(start_ms)

    def run_headless(self) -> RaceSettlement:
        self._require_race().run_until_finished()
        return self.settle()

    async def play_race(
        self,
        countdown_interval: float = 1.0,
        frame_interval: float = 0.05,
        on_countdown: Optional[Callable[[int], Any]] = None,
        on_frame: Optional[Callable[..., Any]] = None,
        announce_winner: Optional[Callable[[Entrant], Any]] = None,
        announcement_timeout: Optional[float] = None,
        start_ms: Optional[float] = None,
    ) -> RaceSettlement:
        """
        Plays the current race in real time and settles it.

        ``on_frame`` gets each frame and any announcements made since the last
        one. ``announce_winner`` is awaited with a bounded timeout before
        payouts. Cancelling the task abandons the race and refunds all stakes.
        """
        race = self._require_race()
        if announcement_timeout is None:
            announcement_timeout = get_config("discord.announcement_timeout_seconds", 5.0)
        try:
            countdown = race.start_countdown()
            while countdown > 0:
                if on_countdown:
                    await _maybe_await(on_countdown(countdown))
                await asyncio.sleep(countdown_interval)
                countdown = race.countdown_tick()
            race.start_race(start_ms)

            while race.state is RaceState.RACING:
                await asyncio.sleep(frame_interval)
                frame = race.update()
                if on_frame:
                    await _maybe_await(on_frame(frame, race.drain_announcements()))

            if announce_winner:
                try:
                    await asyncio.wait_for(_maybe_await(announce_winner(race.get_winner())), announcement_timeout)
                except asyncio.TimeoutError:
                    print(f"[Session] Winner announcement timed out after {announcement_timeout}s; settling anyway.")
        except asyncio.CancelledError:
            self.abandon_race()
            raise
        return self.settle()

    # --- Networked play ---

    def serialize_race_parameters(self) -> Dict[str, Any]:
        """
        Roster, odds and conditions as they stand after setup.

        Attributes are sent with conditions already applied, plus the RNG
        state, so a peer rebuilds the race without drawing anything.
        """
        if not self.entrants or self.event_engine is None:
            raise RaceStateError("Cannot serialize race parameters before a race is set up.")
        params = RaceParameters(
            race_id=self.race_id,
            seed=self.seed,
            rng_state=self._setup_rng_state,
            timestamp=self._created_at,
            time_of_day=self.time_of_day,
            entrants=[entrant.to_dict() for entrant in self.entrants],
            pre_race_events=dict(self.event_engine.pre_race_events),
            modifiers_applied=True,
            betting_window_start=self._created_at,
        )
        return params.to_dict()

    def load_race_parameters(self, data: Dict[str, Any]) -> List[Entrant]:
        params = RaceParameters.from_dict(data)
        self._close_previous_race()

        if params.rng_state is not None:
            self.rng = SeededRandom(params.rng_state)
            self.rng.initial_seed = params.seed if params.seed is not None else params.rng_state
            self.seed = self.rng.initial_seed
        else:
            self.rng = resolve_rng(None)
            self.seed = None
        self.time_of_day = params.time_of_day
        self.race_id = params.race_id

        entrants = []
        for entry in params.entrants:
            try:
                scheme = find_scheme(entry["name"])
                entrants.append(
                    Entrant(
                        number=int(entry["number"]),
                        scheme=scheme,
                        base_speed=float(entry["base_speed"]),
                        stamina=float(entry["stamina"]),
                        consistency=float(entry["consistency"]),
                        preferred_time=TimeOfDay.from_str(entry["preferred_time"]),
                        odds=int(entry["odds"]),
                    )
                )
            except KeyError as exc:
                raise ValueError(f"Malformed entrant in race parameters: {exc}") from exc
        self.entrants = entrants

        self.event_engine = EventEngine(self.rng, tick_ms=self.settings.tick_ms)
        self.event_engine.restore_pre_race_events(params.pre_race_events, params.modifiers_applied)
        self.event_engine.apply_all_pre_race_modifiers(self.entrants)
        self._attach_race()
        self._log(f"Loaded race {self.race_id} with {len(self.entrants)} entrants.")
        return self.entrants
