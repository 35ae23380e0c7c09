import asyncio
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

import discord
from discord import app_commands
from discord.ext import commands

from ostrich_races.betting_service import BetKind, ExoticKind
from ostrich_races.bot.race_broadcast import (
    RaceBroadcaster,
    build_results_embed,
    format_money,
    format_roster,
)
from ostrich_races.bot_bettors import BettingBot
from ostrich_races.database import queries
from ostrich_races.engine.data_models import TimeOfDay
from ostrich_races.engine.events import PRE_RACE_EVENTS
from ostrich_races.session import GameSession

BET_KIND_CHOICES = [app_commands.Choice(name=kind.value.title(), value=kind.value) for kind in BetKind]
EXOTIC_CHOICES = [app_commands.Choice(name=kind.value.title(), value=kind.value) for kind in ExoticKind]
TIME_CHOICES = [app_commands.Choice(name=tod.value.title(), value=tod.value) for tod in TimeOfDay]


def parse_amount(raw: str) -> Optional[Decimal]:
    """Accepts '1000000', '1,000,000', '1m' or '250k'."""
    if raw is None:
        return None
    text = raw.strip().lower().replace(",", "").replace("$", "")
    scale = Decimal("1")
    if text.endswith("m"):
        scale, text = Decimal("1000000"), text[:-1]
    elif text.endswith("k"):
        scale, text = Decimal("1000"), text[:-1]
    try:
        amount = Decimal(text) * scale
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def parse_picks(raw: str) -> Optional[List[int]]:
    parts = [p for p in raw.replace("-", ",").replace("/", ",").replace(" ", ",").split(",") if p]
    try:
        return [int(p) for p in parts]
    except ValueError:
        return None


class RaceCommands(commands.Cog):
    """Slash commands for running ostrich races in a guild."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.sessions: Dict[int, GameSession] = {}
        self.race_tasks: Dict[int, asyncio.Task] = {}

    def _session_for(self, user_id: int) -> GameSession:
        session = self.sessions.get(user_id)
        if session is None:
            record = queries.ensure_player(str(user_id))
            session = GameSession(bankroll=record["bankroll"], stats=record["stats"], verbose=True)
            self.sessions[user_id] = session
        return session

    def _persist(self, user_id: int, session: GameSession, settlement=None):
        if settlement is not None and not queries.record_settlement(session.race_id, str(user_id), settlement):
            print(f"[RaceCommands] Settlement for race {session.race_id} was not recorded.")
        if not queries.save_player(str(user_id), session.bankroll, session.stats):
            print(f"[RaceCommands] Could not save bankroll for user {user_id}.")

    def _conditions(self, session: GameSession) -> Dict[int, str]:
        events = session.event_engine.pre_race_events if session.event_engine else {}
        return {number: PRE_RACE_EVENTS[event].label for number, event in events.items()}

    def cog_unload(self):
        for task in self.race_tasks.values():
            task.cancel()

    @app_commands.command(name="newrace", description="Set up a new ostrich race and show the field.")
    @app_commands.describe(seed="Optional seed for a reproducible race", time_of_day="Race time of day")
    @app_commands.choices(time_of_day=TIME_CHOICES)
    async def new_race(
        self,
        interaction: discord.Interaction,
        seed: Optional[int] = None,
        time_of_day: Optional[app_commands.Choice[str]] = None,
    ):
        user_id = interaction.user.id
        if user_id in self.race_tasks and not self.race_tasks[user_id].done():
            await interaction.response.send_message("Your race is still running.", ephemeral=True)
            return
        session = self._session_for(user_id)
        tod = TimeOfDay.from_str(time_of_day.value) if time_of_day else None
        entrants = session.new_race(seed=seed, time_of_day=tod)
        queries.record_race(session.race_id, session.seed, session.serialize_race_parameters())

        embed = discord.Embed(
            title=f"Race {session.race_id}",
            description=format_roster(entrants, self._conditions(session)),
            color=discord.Color.blurple(),
        )
        embed.add_field(name="Time of day", value=session.time_of_day.value.title(), inline=True)
        embed.add_field(name="Bankroll", value=format_money(session.bankroll), inline=True)
        if session.seeded:
            embed.set_footer(text=f"Seed {session.seed}")
        await interaction.response.send_message(embed=embed)

    @app_commands.command(name="bet", description="Place a win, place or show bet.")
    @app_commands.describe(entrant="Entrant number (1-8)", amount="Stake, e.g. 1m or 250k", kind="Bet type")
    @app_commands.choices(kind=BET_KIND_CHOICES)
    async def bet(
        self,
        interaction: discord.Interaction,
        entrant: int,
        amount: str,
        kind: Optional[app_commands.Choice[str]] = None,
    ):
        session = self._session_for(interaction.user.id)
        stake = parse_amount(amount)
        if stake is None:
            await interaction.response.send_message("That amount doesn't look like a number.", ephemeral=True)
            return
        bet_kind = BetKind.from_str(kind.value) if kind else BetKind.WIN
        result = session.place_bet(entrant, stake, bet_kind)
        if result.success:
            self._persist(interaction.user.id, session)
            await interaction.response.send_message(
                f"{result.message} Bankroll: {format_money(session.bankroll)}", ephemeral=True
            )
        else:
            await interaction.response.send_message(f"Bet refused: {result.message}", ephemeral=True)

    @app_commands.command(name="exotic", description="Place an exacta, quinella, trifecta or superfecta.")
    @app_commands.describe(kind="Exotic bet type", picks="Entrant numbers in order, e.g. 3,7,1", amount="Stake")
    @app_commands.choices(kind=EXOTIC_CHOICES)
    async def exotic(self, interaction: discord.Interaction, kind: app_commands.Choice[str], picks: str, amount: str):
        session = self._session_for(interaction.user.id)
        stake = parse_amount(amount)
        parsed = parse_picks(picks)
        if stake is None or parsed is None:
            await interaction.response.send_message("Couldn't read the picks or amount.", ephemeral=True)
            return
        result = session.place_exotic_bet(ExoticKind.from_str(kind.value), parsed, stake)
        if result.success:
            self._persist(interaction.user.id, session)
            await interaction.response.send_message(
                f"{result.message} Bankroll: {format_money(session.bankroll)}", ephemeral=True
            )
        else:
            await interaction.response.send_message(f"Bet refused: {result.message}", ephemeral=True)

    @app_commands.command(name="bets", description="Show your open bets for the current race.")
    async def bets(self, interaction: discord.Interaction):
        session = self._session_for(interaction.user.id)
        lines = [
            f"{bet.kind.value.title()} #{bet.entrant}: {format_money(bet.amount)}"
            for bet in session.betting.bets
        ]
        lines += [
            f"[{bet.bet_id}] {bet.describe()}: {format_money(bet.amount)}"
            for bet in session.exotics.exotic_bets
        ]
        text = "\n".join(lines) if lines else "No open bets."
        await interaction.response.send_message(text, ephemeral=True)

    @app_commands.command(name="clearbets", description="Cancel every open bet and refund the stakes.")
    async def clear_bets(self, interaction: discord.Interaction):
        session = self._session_for(interaction.user.id)
        refunded = session.clear_all_bets()
        self._persist(interaction.user.id, session)
        await interaction.response.send_message(
            f"Refunded {format_money(refunded)}. Bankroll: {format_money(session.bankroll)}", ephemeral=True
        )

    @app_commands.command(name="race", description="Run the current race.")
    async def race(self, interaction: discord.Interaction):
        user_id = interaction.user.id
        session = self._session_for(user_id)
        if not session.betting_open:
            await interaction.response.send_message("Set up a race with /newrace first.", ephemeral=True)
            return
        if user_id in self.race_tasks and not self.race_tasks[user_id].done():
            await interaction.response.send_message("Your race is already running.", ephemeral=True)
            return

        await interaction.response.send_message("Heading to the gate...")
        message = await interaction.original_response()
        broadcaster = RaceBroadcaster(message, session.entrants, title=f"Race {session.race_id}")
        task = asyncio.create_task(
            session.play_race(
                on_countdown=broadcaster.on_countdown,
                on_frame=broadcaster.on_frame,
                announce_winner=broadcaster.announce_winner,
                frame_interval=broadcaster.frame_delay,
            )
        )
        self.race_tasks[user_id] = task
        try:
            settlement = await task
        except asyncio.CancelledError:
            self._persist(user_id, session)
            await interaction.followup.send("Race abandoned. All stakes refunded.")
            return
        finally:
            self.race_tasks.pop(user_id, None)

        self._persist(user_id, session, settlement)
        names = {entrant.number: entrant.name for entrant in session.entrants}
        await interaction.followup.send(embed=build_results_embed(settlement, names))

    @app_commands.command(name="bankroll", description="Show your bankroll and lifetime stats.")
    async def bankroll(self, interaction: discord.Interaction):
        session = self._session_for(interaction.user.id)
        stats = session.stats
        embed = discord.Embed(title="Your Stable of Bets", color=discord.Color.gold())
        embed.add_field(name="Bankroll", value=format_money(session.bankroll), inline=False)
        embed.add_field(name="Races watched", value=str(stats.races_watched), inline=True)
        embed.add_field(name="Wins / Losses", value=f"{stats.total_wins} / {stats.total_losses}", inline=True)
        embed.add_field(name="Biggest win", value=format_money(stats.biggest_win), inline=True)
        embed.add_field(name="Biggest loss", value=format_money(stats.biggest_loss), inline=True)
        embed.add_field(name="Bailouts", value=str(stats.bailouts), inline=True)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="autobot", description="Let the betting bot play several races for you.")
    @app_commands.describe(races="How many races to run (1-20)", seed="Optional starting seed")
    async def autobot(self, interaction: discord.Interaction, races: app_commands.Range[int, 1, 20] = 3, seed: Optional[int] = None):
        user_id = interaction.user.id
        session = self._session_for(user_id)
        await interaction.response.defer(thinking=True)

        bot_id = f"autobot_{user_id}"
        betting_bot = BettingBot(session, stats=queries.get_bot_stats(bot_id))

        def _record(settlement):
            queries.record_race(session.race_id, session.seed, session.serialize_race_parameters())
            queries.record_settlement(session.race_id, str(user_id), settlement)

        session.settlement_listeners.append(_record)
        try:
            settlements = await betting_bot.auto_run(races, seed=seed, headless=True)
        finally:
            session.settlement_listeners.remove(betting_bot.record_race_results)
            session.settlement_listeners.remove(_record)
        queries.save_player(str(user_id), session.bankroll, session.stats)
        queries.save_bot_stats(bot_id, betting_bot.stats)

        total = sum((s.combined_profit for s in settlements), Decimal("0"))
        best = betting_bot.best_bet_type() or "-"
        await interaction.followup.send(
            f"Bot ran {len(settlements)} races. Net {format_money(total)}. "
            f"Best bet type so far: {best}. Bankroll: {format_money(session.bankroll)}"
        )


async def setup(bot: commands.Bot):
    await bot.add_cog(RaceCommands(bot))
    print("RaceCommands Cog loaded.")
