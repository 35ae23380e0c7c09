import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from ostrich_races.betting_service import ExoticKind
from ostrich_races.bot.commands import parse_amount, parse_picks
from ostrich_races.bot.race_broadcast import (
    RaceBroadcaster,
    announcement_text,
    build_results_embed,
    format_money,
    format_odds,
    format_roster,
    render_track,
)
from ostrich_races.engine.data_models import Announcement, AnnouncementKind, TimeOfDay
from ostrich_races.engine.telemetry import EntrantFrame, RaceFrame
from ostrich_races.session import GameSession

NAMES = {1: "Golden Emperor", 2: "Diamond Sand"}


def _frame():
    return RaceFrame(
        tick=100,
        time_ms=1600,
        state="racing",
        leader=1,
        entrants=[
            EntrantFrame(1, NAMES[1], 0, 0.5, 1.0, False, None, None),
            EntrantFrame(2, NAMES[2], 1, 0.25, 0.8, False, None, "spin_out"),
        ],
    )


def test_money_and_odds_formatting():
    assert format_money(Decimal("1000000")) == "$1,000,000"
    assert format_money(Decimal("12.5")) == "$12.50"
    assert format_money(None) == "-"
    assert format_odds(4) == "4-1"


def test_track_bars_follow_progress():
    track = render_track(_frame(), NAMES)
    lines = track.strip("`\n").splitlines()
    assert lines[0].startswith("1 |" + "=" * 10 + ">")
    assert lines[1].endswith("(spinning)")


def test_roster_lists_conditions():
    session = GameSession()
    entrants = session.new_race(seed=2, time_of_day=TimeOfDay.DAY)
    text = format_roster(entrants, {entrants[0].number: "Sick"})
    assert "[Sick]" in text
    assert entrants[-1].name in text


def test_announcement_text_for_each_kind():
    assert announcement_text(Announcement(AnnouncementKind.RACE_START, None, ""), NAMES) == "And they're off!"
    assert "Golden Emperor" in announcement_text(Announcement(AnnouncementKind.WINNER, 1, ""), NAMES)
    assert "takes the lead" in announcement_text(Announcement(AnnouncementKind.LEAD_CHANGE, 2, ""), NAMES)
    assert "Trip" in announcement_text(Announcement(AnnouncementKind.INCIDENT, 1, "Trip"), NAMES)
    chain = Announcement(AnnouncementKind.CHAIN_REACTION, 2, "Trip", extra={"source": 1})
    assert "Golden Emperor" in announcement_text(chain, NAMES)


def test_results_embed_lists_every_bet():
    session = GameSession(bankroll=1000)
    session.new_race(seed=3, time_of_day=TimeOfDay.DAY)
    session.place_bet(1, 100)
    session.place_exotic_bet(ExoticKind.EXACTA, [1, 2], 100)
    settlement = session.run_headless()

    embed = build_results_embed(settlement, {e.number: e.name for e in session.entrants})
    fields = {field.name: field.value for field in embed.fields}
    assert embed.title == "Race Results"
    assert len(fields["Bets"].splitlines()) == 2
    assert fields["Bankroll"] == format_money(settlement.bankroll)


def test_broadcaster_edits_message_and_survives_http_errors():
    message = MagicMock()
    message.edit = AsyncMock()
    message.channel.send = AsyncMock()
    session = GameSession()
    entrants = session.new_race(seed=4, time_of_day=TimeOfDay.DAY)
    broadcaster = RaceBroadcaster(message, entrants, title="Race test")

    start = Announcement(AnnouncementKind.RACE_START, None, "")
    asyncio.run(broadcaster.on_frame(_frame(), [start]))
    assert broadcaster.commentary == ["And they're off!"]
    message.edit.assert_awaited_once()

    message.edit.side_effect = discord.HTTPException(MagicMock(status=500, reason="Server Error"), "boom")
    asyncio.run(broadcaster.on_frame(_frame(), []))

    asyncio.run(broadcaster.announce_winner(entrants[0]))
    message.channel.send.assert_awaited_once()


def test_amount_and_pick_parsing():
    assert parse_amount("1m") == Decimal("1000000")
    assert parse_amount("250k") == Decimal("250000")
    assert parse_amount("$1,500") == Decimal("1500")
    assert parse_amount("lots") is None
    assert parse_amount("nan") is None
    assert parse_amount("inf") is None
    assert parse_amount("-infinity") is None
    assert parse_picks("3,7,1") == [3, 7, 1]
    assert parse_picks("3-7") == [3, 7]
    assert parse_picks("3, x") is None


@pytest.mark.parametrize("raw", ["", "   "])
def test_blank_amount_is_rejected(raw):
    assert parse_amount(raw) is None
