from decimal import Decimal
from typing import Dict, List, Optional, Sequence

import discord

from ostrich_races.config import get_config
from ostrich_races.engine.data_models import Announcement, AnnouncementKind, Entrant
from ostrich_races.engine.telemetry import RaceFrame

TRACK_WIDTH = 20
POSITION_MEDALS = {1: "🥇", 2: "🥈", 3: "🥉"}
EVENT_TAGS = {
    "trip": "tripped",
    "spin_out": "spinning",
    "burst_of_speed": "bursting",
    "stumble": "stumbling",
}


def format_money(value) -> str:
    if value is None:
        return "-"
    try:
        amount = Decimal(str(value))
    except Exception:
        return str(value)
    if amount == amount.to_integral_value():
        return f"${int(amount):,}"
    return f"${amount.quantize(Decimal('0.01')):,}"


def format_odds(odds: Optional[int]) -> str:
    if odds is None:
        return "-"
    return f"{odds}-1"


def format_roster(entrants: Sequence[Entrant], conditions: Optional[Dict[int, str]] = None) -> str:
    if not entrants:
        return "No entrants."
    conditions = conditions or {}
    lines = []
    for entrant in entrants:
        condition = conditions.get(entrant.number)
        tag = f" [{condition}]" if condition else ""
        lines.append(f"#{entrant.number:<2} {entrant.name:<20} {format_odds(entrant.odds):>5}{tag}")
    return "```\n" + "\n".join(lines) + "\n```"


def render_track(frame: RaceFrame, names: Dict[int, str]) -> str:
    """Text progress bars, one lane per entrant."""
    lines = []
    for entrant in frame.entrants:
        filled = min(TRACK_WIDTH, int(entrant.position * TRACK_WIDTH))
        bar = "=" * filled + ">" + " " * (TRACK_WIDTH - filled)
        suffix = ""
        if entrant.finish_position:
            suffix = f" {POSITION_MEDALS.get(entrant.finish_position, '#' + str(entrant.finish_position))}"
        elif entrant.active_event:
            suffix = f" ({EVENT_TAGS.get(entrant.active_event, entrant.active_event)})"
        lines.append(f"{entrant.number} |{bar}| {names.get(entrant.number, '')[:14]}{suffix}")
    return "```\n" + "\n".join(lines) + "\n```"


def announcement_text(announcement: Announcement, names: Dict[int, str]) -> str:
    name = names.get(announcement.entrant_number, f"#{announcement.entrant_number}")
    kind = announcement.kind
    if kind is AnnouncementKind.RACE_START:
        return "And they're off!"
    if kind is AnnouncementKind.WINNER:
        return f"🏁 {name} crosses the line first!"
    if kind is AnnouncementKind.LEAD_CHANGE:
        return f"{name} takes the lead!"
    if kind is AnnouncementKind.INCIDENT:
        return f"⚠️ {announcement.label} for {name}!"
    if kind is AnnouncementKind.CHAIN_REACTION:
        source = names.get(announcement.extra.get("source"), "a neighbour")
        return f"💥 {name} gets caught up with {source}: {announcement.label}!"
    raise ValueError(f"Unhandled announcement kind: {kind}")


def build_race_embed(frame: RaceFrame, names: Dict[int, str], commentary: List[str], title: str) -> discord.Embed:
    embed = discord.Embed(title=title, color=discord.Color.gold())
    embed.description = render_track(frame, names)
    if commentary:
        embed.add_field(name="Commentary", value="\n".join(commentary[-5:]), inline=False)
    embed.set_footer(text=f"{frame.time_ms / 1000:.1f}s")
    return embed


def build_results_embed(settlement, names: Dict[int, str]) -> discord.Embed:
    profit = settlement.combined_profit
    color = discord.Color.green() if profit > 0 else discord.Color.red()
    embed = discord.Embed(title="Race Results", color=color)

    podium = []
    for rank, number in enumerate(settlement.order[:4], start=1):
        podium.append(f"{POSITION_MEDALS.get(rank, str(rank) + '.')} #{number} {names.get(number, '')}")
    embed.add_field(name="Finish", value="\n".join(podium), inline=False)

    bet_lines = []
    for outcome in settlement.simple.results:
        mark = "✅" if outcome.won else "❌"
        bet_lines.append(
            f"{mark} {outcome.kind.value.title()} #{outcome.entrant} "
            f"{format_money(outcome.amount)} -> {format_money(outcome.payout)}"
        )
    for outcome in settlement.exotic.results:
        mark = "✅" if outcome.won else "❌"
        bet_lines.append(
            f"{mark} {outcome.bet.describe()} {format_money(outcome.bet.amount)} -> {format_money(outcome.payout)}"
        )
    embed.add_field(name="Bets", value="\n".join(bet_lines) or "No bets placed.", inline=False)
    embed.add_field(name="Profit", value=format_money(profit), inline=True)
    embed.add_field(name="Bankroll", value=format_money(settlement.bankroll), inline=True)
    if settlement.desync:
        embed.set_footer(text="Local result differed from the official result; official order used.")
    return embed


class RaceBroadcaster:
    """
    Plays a race into a single channel message, editing it as frames arrive.
    """

    def __init__(self, message: discord.Message, entrants: Sequence[Entrant], title: str = "Ostrich Race"):
        self.message = message
        self.names = {entrant.number: entrant.name for entrant in entrants}
        self.title = title
        self.commentary: List[str] = []
        self.frame_delay = get_config("discord.frame_delay_seconds", 1.5)

    async def on_countdown(self, remaining: int):
        await self.message.edit(content=f"Race starts in {remaining}...", embed=None)

    async def on_frame(self, frame: RaceFrame, announcements: List[Announcement]):
        for announcement in announcements:
            self.commentary.append(announcement_text(announcement, self.names))
        embed = build_race_embed(frame, self.names, self.commentary, self.title)
        try:
            await self.message.edit(content=None, embed=embed)
        except discord.HTTPException as e:
            print(f"[RaceBroadcast] Failed to update race message: {e}")

    async def announce_winner(self, winner: Entrant):
        await self.message.channel.send(f"🏆 **{winner.name}** (#{winner.number}) wins the race!")
