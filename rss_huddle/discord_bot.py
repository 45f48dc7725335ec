"""Discord adapter: slash commands and the delivery sink."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

import discord
from discord import app_commands

from .commands import ALL_SOURCES, CommandService
from .errors import SendError
from .liveness import start_liveness_server
from .scheduler import Ticker

logger = logging.getLogger(__name__)

COMMAND_ERROR_TEXT = "Something went wrong handling that command."


class DiscordSink:
    """Deliver messages to Discord text channels."""

    def __init__(self, client: discord.Client) -> None:
        self.client = client

    async def resolve(self, destination: str) -> Optional[discord.abc.Messageable]:
        try:
            channel_id = int(destination)
        except ValueError:
            logger.debug("Destination %r is not a Discord channel id", destination)
            return None

        channel = self.client.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.client.fetch_channel(channel_id)
            except (discord.NotFound, discord.Forbidden):
                return None
        return channel

    async def send(self, handle: discord.abc.Messageable, text: str) -> None:
        try:
            await handle.send(text)
        except discord.HTTPException as exc:
            raise SendError(str(exc)) from exc


class HuddleBot(discord.Client):
    """Discord client that owns the ticker and the command tree."""

    def __init__(
        self,
        guild_id: Optional[int] = None,
        liveness_port: Optional[int] = None,
    ) -> None:
        super().__init__(intents=discord.Intents.default())
        self.tree = app_commands.CommandTree(self)
        self.sink = DiscordSink(self)
        self.guild_id = guild_id
        self.liveness_port = liveness_port
        self.ticker: Optional[Ticker] = None
        self.service: Optional[CommandService] = None
        self._ticker_task: Optional[asyncio.Task] = None
        self._liveness = None

    def attach(self, ticker: Ticker, service: CommandService) -> None:
        self.ticker = ticker
        self.service = service
        register_commands(self.tree, service)

    async def setup_hook(self) -> None:
        if self.ticker is None or self.service is None:
            raise RuntimeError("attach() must be called before the bot starts.")

        if self.guild_id is not None:
            guild = discord.Object(id=self.guild_id)
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to guild %s", len(synced), self.guild_id)

        if self.liveness_port:
            self._liveness = await start_liveness_server(self.liveness_port)

        self._ticker_task = asyncio.create_task(self.ticker.run())

    async def on_ready(self) -> None:
        logger.info("Logged in as %s", self.user)

    async def close(self) -> None:
        if self.ticker is not None:
            self.ticker.stop()
        if self._ticker_task is not None:
            self._ticker_task.cancel()
        if self._liveness is not None:
            await self._liveness.cleanup()
        await super().close()


def register_commands(tree: app_commands.CommandTree, service: CommandService) -> None:
    """Register the slash commands backed by ``service``."""
    source_choices = [
        app_commands.Choice(name=key, value=key) for key in service.sources()
    ][:24]
    source_choices.append(app_commands.Choice(name="all (default)", value=ALL_SOURCES))
    max_count = service.config.query.max_count

    @tree.command(
        name="nfl",
        description="Latest NFL headlines from default sources (or a specific source)",
    )
    @app_commands.describe(
        count=f"How many (1-{max_count})", source="Choose a specific source"
    )
    @app_commands.choices(source=source_choices)
    async def nfl(
        interaction: discord.Interaction,
        count: Optional[int] = None,
        source: Optional[app_commands.Choice[str]] = None,
    ) -> None:
        await interaction.response.defer()
        key = source.value if source is not None else ALL_SOURCES
        text = await asyncio.to_thread(service.latest, count, key)
        await interaction.followup.send(text)

    @tree.command(name="team", description="Latest headlines for a specific NFL team")
    @app_commands.describe(
        team="Team name (autocomplete)", count=f"How many (1-{max_count})"
    )
    async def team(
        interaction: discord.Interaction, team: str, count: Optional[int] = None
    ) -> None:
        if service.teams.get(team.strip().upper()) is None:
            await interaction.response.send_message(
                service.team(team, count), ephemeral=True
            )
            return
        await interaction.response.defer()
        text = await asyncio.to_thread(service.team, team, count)
        await interaction.followup.send(text)

    @team.autocomplete("team")
    async def team_autocomplete(
        interaction: discord.Interaction, current: str
    ) -> List[app_commands.Choice[str]]:
        return [
            app_commands.Choice(name=label, value=code)
            for label, code in service.team_choices(current)
        ]

    @tree.command(name="injuries", description="Latest NFL injury headlines (filtered)")
    @app_commands.describe(count=f"How many (1-{max_count})")
    async def injuries(
        interaction: discord.Interaction, count: Optional[int] = None
    ) -> None:
        await interaction.response.defer()
        text = await asyncio.to_thread(service.injuries, count)
        await interaction.followup.send(text)

    @tree.command(name="fantasynews", description="Latest NFL fantasy player news")
    @app_commands.describe(count=f"How many (1-{max_count})")
    async def fantasynews(
        interaction: discord.Interaction, count: Optional[int] = None
    ) -> None:
        await interaction.response.defer()
        text = await asyncio.to_thread(service.fantasy, count)
        await interaction.followup.send(text)

    @tree.command(
        name="subscribe", description="Subscribe this channel to default NFL headlines"
    )
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.guild_only()
    async def subscribe(interaction: discord.Interaction) -> None:
        text = service.subscribe(str(interaction.channel_id))
        await interaction.response.send_message(text, ephemeral=True)

    @tree.command(
        name="unsubscribe", description="Unsubscribe this channel from NFL headlines"
    )
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.guild_only()
    async def unsubscribe(interaction: discord.Interaction) -> None:
        text = service.unsubscribe(str(interaction.channel_id))
        await interaction.response.send_message(text, ephemeral=True)

    @tree.command(
        name="status", description="Bot heartbeat, next tick ETA, feed counts, last error"
    )
    async def status(interaction: discord.Interaction) -> None:
        await interaction.response.send_message(service.status(), ephemeral=True)

    @tree.error
    async def on_command_error(
        interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        name = interaction.command.name if interaction.command else "unknown"
        logger.error("Command /%s failed", name, exc_info=error)
        try:
            if interaction.response.is_done():
                await interaction.followup.send(COMMAND_ERROR_TEXT, ephemeral=True)
            else:
                await interaction.response.send_message(
                    COMMAND_ERROR_TEXT, ephemeral=True
                )
        except discord.HTTPException as exc:
            logger.warning("Could not report command failure: %s", exc)
