import io
import logging

import discord
from discord.ext import commands

from source.context import Context
from source.server.server import ServerManager
from source.services.manager import ServicesManager
from source.services.transcription.capture import start_capture
from source.services.transcription.errors import (
    AlreadyActiveError,
    LogFileError,
    NotFoundError,
)
from source.utils import format_session_key

logger = logging.getLogger(__name__)


# -------------------------------------------------------------- #
# Cog
# -------------------------------------------------------------- #


class Voice(commands.Cog):
    """Voice based commands."""

    def __init__(self, bot: discord.Bot, server: ServerManager, services: ServicesManager):
        self.bot = bot
        self.server = server
        self.services = services

    # -------------------------------------------------------------- #
    # Utils
    # -------------------------------------------------------------- #

    def find_user_vc(self, ctx: discord.ApplicationContext) -> discord.VoiceChannel | None:
        """Find a voice channel the user is in.

        Args:
            ctx: Discord application context

        Returns:
            Voice channel if user is connected, None otherwise
        """
        return ctx.author.voice.channel if ctx.author.voice else None

    async def get_bot_voice_client(
        self,
        ctx: discord.ApplicationContext,
    ) -> discord.VoiceClient | None:
        """Get the bot's voice client in a guild, if connected."""
        if ctx.guild is None:
            return None

        client = ctx.guild.voice_client

        # Has existing connection
        if client and client.is_connected():
            return client
        return None

    def member_name_resolver(self, guild: discord.Guild):
        """Map a user id from the voice receive thread to a username."""

        def resolve(user_id) -> str:
            member = guild.get_member(int(user_id))
            if member is None:
                return str(user_id)
            return member.name

        return resolve

    # -------------------------------------------------------------- #
    # Slash Commands
    # -------------------------------------------------------------- #

    @commands.slash_command(name="transcribe", description="Transcribe the current voice channel")
    async def transcribe(self, ctx: discord.ApplicationContext) -> None:
        """Join the caller's voice channel and post a live transcript to this channel.

        Args:
            ctx: Discord application context
        """
        await ctx.defer()

        if ctx.guild is None:
            await ctx.edit(content="❌ This command can only be used in a server.")
            return

        if self.bot.context.is_shutting_down():
            await ctx.edit(content="❌ The bot is shutting down.")
            return

        # 1. Validate user is in a voice channel
        voice_channel = self.find_user_vc(ctx)
        if not voice_channel:
            await ctx.edit(content="❌ You must be in a voice channel to use this command.")
            return

        session_key = format_session_key(ctx.guild.id)
        session_manager = self.services.transcription_session_manager
        if session_manager.has_session(session_key):
            await ctx.edit(content="❌ Already transcribing in this server. Use /stop first.")
            return

        logger.info(
            f"Transcribe command called by {ctx.author.id} in guild {ctx.guild.id}, "
            f"voice channel {voice_channel.id}"
        )

        # 2. Connect to voice channel
        await ctx.edit(content="⏳ Joining voice channel...")
        voice_client = await self.get_bot_voice_client(ctx)
        try:
            if voice_client is None:
                voice_client = await voice_channel.connect(timeout=5.0, reconnect=True)
            elif voice_client.channel.id != voice_channel.id:
                await voice_client.move_to(voice_channel)
        except (discord.DiscordException, TimeoutError) as e:
            logger.error(f"Failed to connect to voice channel {voice_channel.id}: {e}")
            await ctx.edit(content=f"❌ Failed to connect to voice channel: {e}")
            return

        # 3. Open the session and start capturing
        try:
            session = await session_manager.open_session(
                session_key, text_channel=ctx.channel, voice_client=voice_client
            )
        except AlreadyActiveError:
            await ctx.edit(content="❌ Already transcribing in this server. Use /stop first.")
            return
        except LogFileError as e:
            logger.error(f"Failed to open transcript log for guild {ctx.guild.id}: {e}")
            await ctx.edit(content="❌ Could not create the transcript file.")
            await voice_client.disconnect()
            return

        try:
            start_capture(session, voice_client, self.member_name_resolver(ctx.guild))
        except discord.DiscordException as e:
            logger.error(f"Failed to start recording in guild {ctx.guild.id}: {e}")
            await session_manager.close_session(session_key, export=False)
            await voice_client.disconnect()
            await ctx.edit(content=f"❌ Failed to start recording: {e}")
            return

        await ctx.edit(
            content=f"✅ Transcribing {voice_channel.mention}! Use /stop to end the transcription."
        )

    @commands.slash_command(name="stop", description="Stop transcribing in this server")
    async def stop(self, ctx: discord.ApplicationContext) -> None:
        """Stop the live transcript, flush what is left and upload the transcript file.

        Args:
            ctx: Discord application context
        """
        await ctx.defer()

        if ctx.guild is None:
            await ctx.edit(content="❌ This command can only be used in a server.")
            return

        session_key = format_session_key(ctx.guild.id)
        await ctx.edit(content="⏳ Stopping transcription...")

        try:
            session = await self.services.transcription_session_manager.close_session(session_key)
        except NotFoundError:
            await ctx.edit(content="❌ No active transcription in this server.")
            return

        voice_client = session.voice_client or await self.get_bot_voice_client(ctx)
        try:
            if voice_client and voice_client.is_connected():
                await voice_client.disconnect()
        except discord.DiscordException as e:
            logger.error(f"Error disconnecting from voice: {e}")

        await ctx.edit(content="✅ Transcription stopped.")

    @commands.slash_command(name="transcript", description="Get the transcript so far")
    async def transcript(self, ctx: discord.ApplicationContext) -> None:
        """Send the transcript of the active session as a file."""
        await ctx.defer(ephemeral=True)

        if ctx.guild is None:
            await ctx.edit(content="❌ This command can only be used in a server.")
            return

        session_key = format_session_key(ctx.guild.id)
        try:
            text = self.services.transcription_session_manager.export_transcript(session_key)
        except NotFoundError:
            await ctx.edit(content="❌ No active transcription in this server.")
            return

        if not text:
            await ctx.edit(content="Nothing has been transcribed yet.")
            return

        transcript_file = discord.File(
            io.BytesIO(text.encode("utf-8")), filename=f"transcription_{session_key}.txt"
        )
        await ctx.edit(content="Here's the transcript so far:", file=transcript_file)


def setup(context: Context) -> Voice:
    voice = Voice(context.bot, context.server_manager, context.services_manager)
    context.bot.add_cog(voice)
    return voice
