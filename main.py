# Main File

import asyncio
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

import discord
import dotenv

from source.config import TranscriptionConfig
from source.constructor import ServerManagerType
from source.context import Context
from source.server.constructor import construct_server_manager
from source.services.constructor import construct_services_manager

# Configure Python's built-in logging for server initialization
# (before AsyncLoggingService is available)
logs_dir = Path("logs")
logs_dir.mkdir(parents=True, exist_ok=True)
timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
log_file = logs_dir / f"app_{timestamp}.log"

dotenv.load_dotenv(dotenv_path=".env.local")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Configure logging to output to both console and file
logging.basicConfig(
    level=LOG_LEVEL,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(log_file, mode="a", encoding="utf-8"),
    ],
    force=True,
)

# -------------------------------------------------------------- #
# Discord Bot Setup
# -------------------------------------------------------------- #

# Comma separated guild ids for instant command registration during development.
# Leave unset for global commands (takes up to 1 hour to register)
DEBUG_GUILD_IDS = [
    int(guild_id) for guild_id in os.getenv("DEBUG_GUILD_IDS", "").split(",") if guild_id.strip()
]

intents = discord.Intents.default()
intents.voice_states = True

# If DEBUG_GUILD_IDS is not empty, commands will register instantly in those guilds
bot = discord.Bot(intents=intents, debug_guilds=DEBUG_GUILD_IDS or None)


async def load_cogs(context: Context):
    """Load all cog extensions with context.

    Args:
        context: The application context instance
    """
    from cogs.voice import setup as setup_voice

    setup_voice(context)
    await context.services_manager.logging_service.info("✓ Loaded cogs.voice")


# -------------------------------------------------------------- #
# Events
# -------------------------------------------------------------- #


@bot.event
async def on_ready():
    """Called when the bot is ready and connected to Discord."""
    logger = bot.context.services_manager.logging_service

    await logger.info(f"Logged in as {bot.user.name} (ID: {bot.user.id})")
    await logger.info(f"Connected to {len(bot.guilds)} guild(s):")
    for guild in bot.guilds:
        await logger.info(f"  ✓ {guild.name} (ID: {guild.id})")

    slash_commands = [
        cmd for cmd in bot.pending_application_commands if isinstance(cmd, discord.SlashCommand)
    ]
    for cmd in slash_commands:
        await logger.info(f"  ✓ /{cmd.name} - {cmd.description}")

    if DEBUG_GUILD_IDS:
        await logger.info(f"Commands registered for guilds: {DEBUG_GUILD_IDS}")
    else:
        await logger.info("Commands registered globally, this can take up to 1 hour to appear")


@bot.event
async def on_application_command_error(
    ctx: discord.ApplicationContext, error: discord.DiscordException
):
    """Handle errors in application commands."""
    logger = bot.context.services_manager.logging_service
    await logger.error(f"Error in command {ctx.command.name}: {error}")

    if isinstance(error, discord.CheckFailure):
        await ctx.respond("❌ You don't have permission to use this command.", ephemeral=True)
    else:
        await ctx.respond(f"❌ An error occurred: {str(error)}", ephemeral=True)


# -------------------------------------------------------------- #
# Run Bot
# -------------------------------------------------------------- #


async def main():
    """Main function to load cogs and start the bot."""
    # -------------------------------------------------------------- #
    # Startup services
    # -------------------------------------------------------------- #

    # We need to print to console initially since logging service isn't set up yet
    print("=" * 40)
    print("Syncing services...")

    # Create context object
    context = Context()
    context.set_config(TranscriptionConfig.from_env())

    # init server manager
    servers_manager = construct_server_manager(ServerManagerType.DEVELOPMENT, context)
    context.set_server_manager(servers_manager)
    await servers_manager.connect_all()
    print("[OK] Connected all servers.")

    transcription_storage_path = os.getenv(
        "TRANSCRIPTION_STORAGE_PATH", "assets/data/transcriptions"
    )

    # Use the same log file that was created for built-in logging
    services_manager = construct_services_manager(
        ServerManagerType.DEVELOPMENT,
        context=context,
        transcription_storage_path=transcription_storage_path,
        log_file=log_file.name,
        min_log_level=LOG_LEVEL,
    )
    context.set_services_manager(services_manager)
    await services_manager.initialize_all()

    # Now we can use the async logger
    logger = services_manager.logging_service
    await logger.info("[OK] Initialized all services.")

    # Set bot instance on context
    context.set_bot(bot)

    # Store context on bot for access in cogs
    bot.context = context

    # -------------------------------------------------------------- #
    # Start Discord Bot
    # -------------------------------------------------------------- #

    token = os.getenv("DISCORD_API_TOKEN")
    if not token:
        await logger.error("Error: DISCORD_API_TOKEN not found in environment variables")
        await services_manager.shutdown_all()
        return

    try:
        async with bot:
            await load_cogs(context)
            await bot.start(token)
    finally:
        # flush open sessions so buffered speech is not lost on exit
        await services_manager.shutdown_all(timeout=60.0)


if __name__ == "__main__":
    asyncio.run(main())
