from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ostrich_races.config import get_money

PLACE_MULTIPLIER = get_money("economy.place_multiplier", 0.4)
SHOW_MULTIPLIER = get_money("economy.show_multiplier", 0.3)
SHOW_FLOOR = get_money("economy.show_floor", 1.1)
ZERO = Decimal("0")


class BetKind(Enum):
    WIN = "win"
    PLACE = "place"
    SHOW = "show"

    @classmethod
    def from_str(cls, value: str) -> "BetKind":
        try:
            return cls(value.lower())
        except ValueError as exc:
            raise ValueError(f"Unknown bet kind: {value}") from exc

    @property
    def paying_ranks(self) -> int:
        return {BetKind.WIN: 1, BetKind.PLACE: 2, BetKind.SHOW: 3}[self]

    def multiplier(self, odds) -> Decimal:
        odds = Decimal(str(odds))
        if self is BetKind.WIN:
            return odds
        if self is BetKind.PLACE:
            return odds * PLACE_MULTIPLIER
        if self is BetKind.SHOW:
            return max(odds * SHOW_MULTIPLIER, SHOW_FLOOR)
        raise ValueError(f"Unhandled bet kind: {self}")


class ExoticKind(Enum):
    EXACTA = "exacta"
    QUINELLA = "quinella"
    TRIFECTA = "trifecta"
    SUPERFECTA = "superfecta"

    @classmethod
    def from_str(cls, value: str) -> "ExoticKind":
        try:
            return cls(value.lower())
        except ValueError as exc:
            raise ValueError(f"Unknown exotic bet kind: {value}") from exc

    @property
    def picks_required(self) -> int:
        return {
            ExoticKind.EXACTA: 2,
            ExoticKind.QUINELLA: 2,
            ExoticKind.TRIFECTA: 3,
            ExoticKind.SUPERFECTA: 4,
        }[self]

    @property
    def multiplier(self) -> Decimal:
        defaults = {
            ExoticKind.EXACTA: 15,
            ExoticKind.QUINELLA: 8,
            ExoticKind.TRIFECTA: 50,
            ExoticKind.SUPERFECTA: 200,
        }
        return get_money(f"exotics.{self.value}", defaults[self])

    @property
    def ordered(self) -> bool:
        return self is not ExoticKind.QUINELLA

    def wins(self, picks: Sequence[int], order: Sequence[int]) -> bool:
        top = list(order[: self.picks_required])
        if self in (ExoticKind.EXACTA, ExoticKind.TRIFECTA, ExoticKind.SUPERFECTA):
            return list(picks) == top
        if self is ExoticKind.QUINELLA:
            return sorted(picks) == sorted(top)
        raise ValueError(f"Unhandled exotic kind: {self}")


class WagerRefusal(Enum):
    NON_POSITIVE_STAKE = "non_positive_stake"
    UNKNOWN_ENTRANT = "unknown_entrant"
    WRONG_PICK_COUNT = "wrong_pick_count"
    DUPLICATE_PICKS = "duplicate_picks"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    BETTING_CLOSED = "betting_closed"
    BAILOUT_LIMIT = "bailout_limit"
    NO_SUCH_BET = "no_such_bet"


class InvalidWager(ValueError):
    """A wager the engines refuse. Nothing was mutated."""

    def __init__(self, reason: WagerRefusal, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


class SettlementContractError(RuntimeError):
    """Settlement input disagrees with the bets on file; the roster and race are out of sync."""


@dataclass
class BetResult:
    success: bool
    message: str
    reason: Optional[WagerRefusal] = None
    bet: Optional[object] = None


@dataclass
class Bet:
    entrant: int
    amount: Decimal
    kind: BetKind = BetKind.WIN


@dataclass
class ExoticBet:
    bet_id: int
    kind: ExoticKind
    picks: Tuple[int, ...]
    amount: Decimal

    @property
    def key(self) -> Tuple[ExoticKind, Tuple[int, ...]]:
        picks = self.picks if self.kind.ordered else tuple(sorted(self.picks))
        return self.kind, picks

    def describe(self) -> str:
        separator = "-" if self.kind.ordered else "/"
        return f"{self.kind.value.title()} {separator.join(str(p) for p in self.picks)}"


@dataclass(frozen=True)
class BetOutcome:
    entrant: int
    kind: BetKind
    amount: Decimal
    won: bool
    payout: Decimal
    profit: Decimal


@dataclass(frozen=True)
class ExoticOutcome:
    bet: ExoticBet
    won: bool
    payout: Decimal
    profit: Decimal


@dataclass
class SettlementSummary:
    results: List[Union[BetOutcome, ExoticOutcome]] = field(default_factory=list)
    total_winnings: Decimal = ZERO
    total_losses: Decimal = ZERO
    total_staked: Decimal = ZERO

    @property
    def net_profit(self) -> Decimal:
        return self.total_winnings - self.total_staked


def to_money(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _require_positive(amount: Decimal) -> None:
    if not amount.is_finite() or amount <= ZERO:
        raise InvalidWager(WagerRefusal.NON_POSITIVE_STAKE, "Bet amount must be greater than zero.")


def _rank_lookup(order: Sequence[int]) -> Dict[int, int]:
    if len(set(order)) != len(order):
        raise SettlementContractError(f"Finishing order repeats an entrant: {list(order)}")
    return {number: rank for rank, number in enumerate(order, start=1)}


class BettingSystem:
    """Win, place and show bets for one race. Bankroll handling belongs to the caller."""

    def __init__(self):
        self.bets: List[Bet] = []

    def place_bet(self, entrant: int, amount, kind: BetKind = BetKind.WIN) -> Bet:
        amount = to_money(amount)
        _require_positive(amount)
        for bet in self.bets:
            if bet.entrant == entrant and bet.kind is kind:
                bet.amount += amount
                return bet
        bet = Bet(entrant=entrant, amount=amount, kind=kind)
        self.bets.append(bet)
        return bet

    def get_bet(self, entrant: int, kind: BetKind) -> Optional[Bet]:
        for bet in self.bets:
            if bet.entrant == entrant and bet.kind is kind:
                return bet
        return None

    def clear_bet(self, entrant: int, kind: BetKind) -> Optional[Bet]:
        bet = self.get_bet(entrant, kind)
        if bet is not None:
            self.bets.remove(bet)
        return bet

    def clear_all_bets(self) -> List[Bet]:
        cleared, self.bets = self.bets, []
        return cleared

    def total_bet_amount(self) -> Decimal:
        return sum((bet.amount for bet in self.bets), ZERO)

    def has_bets(self) -> bool:
        return bool(self.bets)

    def calculate_payouts(self, order: Sequence[int], odds_map: Mapping[int, int]) -> SettlementSummary:
        ranks = _rank_lookup(order)
        summary = SettlementSummary()
        for bet in self.bets:
            if bet.entrant not in ranks:
                raise SettlementContractError(f"Entrant #{bet.entrant} missing from finishing order.")
            if bet.entrant not in odds_map:
                raise SettlementContractError(f"Entrant #{bet.entrant} missing from odds table.")

            won = ranks[bet.entrant] <= bet.kind.paying_ranks
            payout = bet.amount * bet.kind.multiplier(odds_map[bet.entrant]) if won else ZERO
            profit = payout - bet.amount if won else -bet.amount

            summary.total_staked += bet.amount
            if won:
                summary.total_winnings += payout
            else:
                summary.total_losses += bet.amount
            summary.results.append(BetOutcome(bet.entrant, bet.kind, bet.amount, won, payout, profit))
        return summary


class ExoticBettingSystem:
    """Multi-entrant bets. Identical (kind, picks) consolidate into one stake."""

    def __init__(self):
        self.exotic_bets: List[ExoticBet] = []
        self._ids = itertools.count(1)

    @staticmethod
    def validate_picks(kind: ExoticKind, picks: Sequence[int]) -> Tuple[int, ...]:
        picks = tuple(int(p) for p in picks)
        if len(picks) != kind.picks_required:
            raise InvalidWager(
                WagerRefusal.WRONG_PICK_COUNT,
                f"{kind.value.title()} needs exactly {kind.picks_required} picks.",
            )
        if len(set(picks)) != len(picks):
            raise InvalidWager(WagerRefusal.DUPLICATE_PICKS, "Each pick must be a different entrant.")
        return picks

    def place_exotic_bet(self, kind: ExoticKind, picks: Sequence[int], amount) -> ExoticBet:
        picks = self.validate_picks(kind, picks)
        amount = to_money(amount)
        _require_positive(amount)

        candidate = ExoticBet(bet_id=0, kind=kind, picks=picks, amount=amount)
        for bet in self.exotic_bets:
            if bet.key == candidate.key:
                bet.amount += amount
                return bet
        candidate.bet_id = next(self._ids)
        self.exotic_bets.append(candidate)
        return candidate

    def get_exotic_bet(self, bet_id: int) -> Optional[ExoticBet]:
        for bet in self.exotic_bets:
            if bet.bet_id == bet_id:
                return bet
        return None

    def clear_exotic_bet(self, bet_id: int) -> Optional[ExoticBet]:
        bet = self.get_exotic_bet(bet_id)
        if bet is not None:
            self.exotic_bets.remove(bet)
        return bet

    def clear_all_exotic_bets(self) -> List[ExoticBet]:
        cleared, self.exotic_bets = self.exotic_bets, []
        return cleared

    def total_exotic_bet_amount(self) -> Decimal:
        return sum((bet.amount for bet in self.exotic_bets), ZERO)

    def has_bets(self) -> bool:
        return bool(self.exotic_bets)

    def calculate_exotic_payouts(self, order: Sequence[int]) -> SettlementSummary:
        ranks = _rank_lookup(order)
        summary = SettlementSummary()
        for bet in self.exotic_bets:
            if len(order) < bet.kind.picks_required:
                raise SettlementContractError(
                    f"{bet.describe()} needs {bet.kind.picks_required} ranked finishers, got {len(order)}."
                )
            missing = [p for p in bet.picks if p not in ranks]
            if missing:
                raise SettlementContractError(f"{bet.describe()} picks missing from finishing order: {missing}")

            won = bet.kind.wins(bet.picks, order)
            payout = bet.amount * bet.kind.multiplier if won else ZERO
            profit = payout - bet.amount if won else -bet.amount

            summary.total_staked += bet.amount
            if won:
                summary.total_winnings += payout
            else:
                summary.total_losses += bet.amount
            summary.results.append(ExoticOutcome(bet, won, payout, profit))
        return summary
