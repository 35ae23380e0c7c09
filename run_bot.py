import os
import sys
import discord
from dotenv import load_dotenv
from ostrich_races.bot.manager import OstrichBotManager

load_dotenv()
DISCORD_BOT_TOKEN = os.getenv('DISCORD_BOT_TOKEN')
GUILD_ID = os.getenv('DISCORD_GUILD_ID')

def run_bot():
    """Initializes and runs the Discord bot."""
    if not DISCORD_BOT_TOKEN or not GUILD_ID:
        print("FATAL ERROR: DISCORD_BOT_TOKEN or DISCORD_GUILD_ID not found in .env file.")
        sys.exit(1)

    intents = discord.Intents.default()
    bot = OstrichBotManager(command_prefix="!", intents=intents, guild_id=int(GUILD_ID))

    try:
        print("Starting Discord bot...")
        bot.run(DISCORD_BOT_TOKEN)
    except discord.DiscordException as e:
        print(f"Error running bot: {e}")

if __name__ == "__main__":
    run_bot()
