import asyncio
import json
from decimal import Decimal

import pytest

from ostrich_races.betting_service import BetKind, ExoticKind, SettlementContractError, WagerRefusal
from ostrich_races.engine.data_models import AnnouncementKind, RaceState, TimeOfDay
from ostrich_races.engine.race_loop import RaceStateError
from ostrich_races.session import GameSession, PlayerStats


class SteppingClock:
    """Advances ``step`` milliseconds every time it is read."""

    def __init__(self, step=100.0):
        self.step = step
        self.now = 0.0

    def __call__(self):
        self.now += self.step
        return self.now


def _session(seed=1, **kwargs):
    session = GameSession(**kwargs)
    session.new_race(seed=seed, time_of_day=TimeOfDay.DAY)
    return session


def test_seeded_sessions_build_the_same_race():
    first = _session(seed=42)
    second = _session(seed=42)
    assert [e.to_dict() for e in first.entrants] == [e.to_dict() for e in second.entrants]
    assert first.event_engine.pre_race_events == second.event_engine.pre_race_events
    assert first.seeded and first.seed == 42


def test_place_and_clear_bet_moves_bankroll():
    session = _session(bankroll=1000)
    result = session.place_bet(1, 300)
    assert result.success
    assert session.bankroll == Decimal("700")

    refund = session.clear_bet(1, BetKind.WIN)
    assert refund.success
    assert session.bankroll == Decimal("1000")
    assert session.clear_bet(1, BetKind.WIN).reason is WagerRefusal.NO_SUCH_BET


def test_refusals_leave_state_untouched():
    session = _session(bankroll=1000)
    assert session.place_bet(9, 100).reason is WagerRefusal.UNKNOWN_ENTRANT
    assert session.place_bet(1, 0).reason is WagerRefusal.NON_POSITIVE_STAKE
    assert session.place_bet(1, 2000).reason is WagerRefusal.INSUFFICIENT_FUNDS
    assert session.bankroll == Decimal("1000")
    assert session.total_staked() == Decimal("0")


def test_non_finite_stakes_are_refused():
    session = _session(bankroll=1000)
    assert session.place_bet(1, float("nan")).reason is WagerRefusal.NON_POSITIVE_STAKE
    assert session.place_bet(1, Decimal("Infinity")).reason is WagerRefusal.NON_POSITIVE_STAKE
    nan_exotic = session.place_exotic_bet(ExoticKind.EXACTA, [1, 2], "NaN")
    assert nan_exotic.success is False
    assert nan_exotic.reason is WagerRefusal.NON_POSITIVE_STAKE
    assert session.bankroll == Decimal("1000")
    assert session.total_staked() == Decimal("0")


def test_betting_closes_when_race_starts():
    session = _session(bankroll=1000)
    session.start_race(start_ms=0)
    assert session.place_bet(1, 100).reason is WagerRefusal.BETTING_CLOSED
    assert session.clear_all_bets() == Decimal("0")


def test_no_betting_before_a_race_exists():
    assert GameSession().place_bet(1, 100).reason is WagerRefusal.BETTING_CLOSED


def test_fresh_player_gets_no_bailout():
    session = _session(bankroll=0, bailout_amount=1000)
    assert session.place_bet(1, 100).reason is WagerRefusal.INSUFFICIENT_FUNDS
    assert session.stats.bailouts == 0


def test_bailout_once_per_race_and_capped_stake():
    session = _session(bankroll=0, stats=PlayerStats(races_watched=1), bailout_amount=1000)

    over = session.place_bet(1, 1500)
    assert over.reason is WagerRefusal.BAILOUT_LIMIT
    assert session.bankroll == Decimal("1000")
    assert session.stats.bailouts == 1

    assert session.place_bet(1, 400).success
    assert session.bankroll == Decimal("600")

    assert session.place_bet(2, 700).reason is WagerRefusal.INSUFFICIENT_FUNDS
    assert session.stats.bailouts == 1


def test_exotic_after_bailout_must_match_bailout():
    session = _session(bankroll=0, stats=PlayerStats(races_watched=2), bailout_amount=1000)

    bad_picks = session.place_exotic_bet(ExoticKind.TRIFECTA, [1, 2], 1000)
    assert bad_picks.reason is WagerRefusal.WRONG_PICK_COUNT
    assert session.stats.bailouts == 0

    partial = session.place_exotic_bet(ExoticKind.EXACTA, [1, 2], 500)
    assert partial.reason is WagerRefusal.BAILOUT_LIMIT
    assert session.bankroll == Decimal("1000")


def test_headless_settlement_pays_winner():
    session = _session(seed=3, bankroll=1000)
    for number in range(1, 9):
        assert session.place_bet(number, 100).success
    assert session.bankroll == Decimal("200")

    settlement = session.run_headless()
    winner_odds = session.odds()[settlement.winner]

    assert settlement.total_staked == Decimal("800")
    assert settlement.total_winnings == Decimal(100 * winner_odds)
    assert session.bankroll == Decimal("200") + Decimal(100 * winner_odds)
    assert session.stats.races_watched == 1
    assert not session.betting.has_bets()
    with pytest.raises(RaceStateError):
        session.settle()


def test_settlement_listeners_are_notified():
    session = _session(seed=4)
    seen = []
    session.settlement_listeners.append(seen.append)
    settlement = session.run_headless()
    assert seen == [settlement]
    assert session.last_settlement is settlement


def test_new_race_refunds_unstarted_bets():
    session = _session(bankroll=1000)
    session.place_bet(2, 250)
    session.place_exotic_bet(ExoticKind.QUINELLA, [1, 2], 250)
    session.new_race(seed=5, time_of_day=TimeOfDay.DAY)
    assert session.bankroll == Decimal("1000")
    assert session.stats.races_watched == 0


def test_new_race_settles_a_finished_race():
    session = _session(seed=6)
    session.race.run_until_finished()
    session.new_race(seed=7, time_of_day=TimeOfDay.DAY)
    assert session.stats.races_watched == 1


def test_peer_rebuilds_identical_race_from_parameters():
    host = _session(seed=99)
    payload = json.loads(json.dumps(host.serialize_race_parameters()))

    peer = GameSession()
    peer.load_race_parameters(payload)

    assert peer.race_id == host.race_id
    assert [e.to_dict() for e in peer.entrants] == [e.to_dict() for e in host.entrants]
    assert peer.event_engine.pre_race_events == host.event_engine.pre_race_events
    assert peer.race.run_until_finished() == host.race.run_until_finished()


def test_malformed_parameters_rejected():
    session = GameSession()
    with pytest.raises(ValueError):
        session.load_race_parameters({"race_id": "abc"})

    payload = _session(seed=8).serialize_race_parameters()
    payload["entrants"][0]["name"] = "Unknown Bird"
    with pytest.raises(ValueError):
        session.load_race_parameters(payload)


def test_serialize_requires_a_race():
    with pytest.raises(RaceStateError):
        GameSession().serialize_race_parameters()


def test_official_results_override_local_order():
    session = _session(seed=10, bankroll=1000)
    local = session.race.run_until_finished()
    official = list(reversed(local))

    settlement = session.handle_official_results(official[0], official)
    assert settlement.desync is True
    assert settlement.order == official
    assert settlement.local_order == local
    assert settlement.winner == official[0]


def test_matching_official_results_are_not_a_desync():
    session = _session(seed=11)
    local = session.race.run_until_finished()
    assert session.handle_official_results(local[0], local).desync is False


def test_official_results_before_local_finish():
    session = _session(seed=12, bankroll=1000)
    session.place_bet(3, 100)
    order = [3, 1, 2, 4, 5, 6, 7, 8]
    settlement = session.handle_official_results(3, order)
    assert settlement.desync is True
    assert settlement.local_order is None
    assert settlement.total_winnings == Decimal(100 * session.odds()[3])


def test_official_results_contract_checks():
    session = _session(seed=13)
    with pytest.raises(SettlementContractError):
        session.handle_official_results(1, [2, 1, 3, 4, 5, 6, 7, 8])
    with pytest.raises(SettlementContractError):
        session.handle_official_results(1, [1, 2, 3, 4, 5, 6, 7, 9])


def test_play_race_drives_callbacks_and_settles():
    session = _session(seed=14, clock=SteppingClock())
    countdowns, frames, winners = [], [], []

    async def announce(winner):
        winners.append(winner)

    settlement = asyncio.run(
        session.play_race(
            countdown_interval=0,
            frame_interval=0,
            on_countdown=countdowns.append,
            on_frame=lambda frame, announcements: frames.append((frame, announcements)),
            announce_winner=announce,
        )
    )

    assert countdowns == [3, 2, 1]
    assert frames[0][1][0].kind is AnnouncementKind.RACE_START
    assert frames[-1][0].state == "finished"
    assert [w.number for w in winners] == [settlement.winner]
    assert session.stats.races_watched == 1


def test_slow_winner_announcement_does_not_block_payout():
    session = _session(seed=15, clock=SteppingClock(step=500.0))

    async def slow_announce(winner):
        await asyncio.sleep(5)

    settlement = asyncio.run(
        session.play_race(
            countdown_interval=0,
            frame_interval=0,
            announce_winner=slow_announce,
            announcement_timeout=0.01,
        )
    )
    assert settlement.winner == session.race.get_winner().number


def test_cancelled_race_refunds_everything():
    session = _session(seed=16, bankroll=1000, clock=lambda: 0.0)
    session.place_bet(1, 400)

    async def scenario():
        task = asyncio.create_task(session.play_race(countdown_interval=0, frame_interval=0))
        for _ in range(20):
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert session.bankroll == Decimal("1000")
    assert session.race.state is RaceState.WAITING
    assert session.stats.races_watched == 0
