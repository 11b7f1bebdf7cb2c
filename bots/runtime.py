"""Discord bot runtime that wires storage, start.gg polling and match threads."""

from __future__ import annotations

import logging

import boto3
import discord
from discord import app_commands

from bots.commands import CommandServices, build_tournament_group
from bots.config import EnvironmentConfig
from bots.discord_channel import DiscordNotificationChannel
from bots.interactions import InteractionRouter
from fightrise.lifecycle import MatchLifecycle
from fightrise.reconciliation import MatchReconciler
from fightrise.remote import StartGGClient
from fightrise.scheduler import PollScheduler
from fightrise.storage import TournamentStorage

log = logging.getLogger("fightrise")

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class BotRuntime:
    def __init__(self, config: EnvironmentConfig, *, dynamodb_resource=None) -> None:
        intents = discord.Intents.default()
        intents.guilds = True

        self.config = config
        self.bot = discord.Client(intents=intents)
        self.tree = app_commands.CommandTree(self.bot)
        self.dynamodb = dynamodb_resource or boto3.resource(
            "dynamodb", region_name=config.aws_region
        )
        self.storage = TournamentStorage(self.dynamodb.Table(config.tournament_table_name))
        self.remote = StartGGClient(
            config.startgg_api_key, api_url=config.startgg_api_url
        )
        self.notifier = DiscordNotificationChannel(self.bot)
        self.lifecycle = MatchLifecycle(self.storage, self.remote, self.notifier)
        self.reconciler = MatchReconciler(self.storage, self.remote, self.lifecycle)
        self.scheduler = PollScheduler(
            self.storage,
            self.reconciler,
            concurrency=config.poll.concurrency,
            max_attempts=config.poll.max_attempts,
            backoff_base=config.poll.backoff_base,
            shutdown_timeout=config.poll.shutdown_timeout,
            lease_seconds=config.poll.lease_seconds,
        )
        self.router = InteractionRouter(self.lifecycle, self.notifier)
        self._ready_once = False

    def configure_features(self) -> None:
        services = CommandServices(
            storage=self.storage,
            lifecycle=self.lifecycle,
            scheduler=self.scheduler,
            remote=self.remote,
            notifier=self.notifier,
            admin_role_id=self.config.admin_role_id,
        )
        if self.tree.get_command("tournament") is None:
            self.tree.add_command(build_tournament_group(services))
        self.bot.event(self.on_ready)
        self.bot.event(self.on_interaction)

    async def on_ready(self) -> None:
        if self._ready_once:
            # on_ready fires again after reconnects.
            return
        self._ready_once = True
        if self.config.sync_commands:
            await self.tree.sync()
        await self.scheduler.start()
        log.info("Bot ready as %s", self.bot.user)

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        try:
            await self.router.dispatch(interaction)
        except Exception:  # pylint: disable=broad-except
            log.exception("Failed to handle interaction %s", interaction.id)
            if not interaction.response.is_done():
                await interaction.response.send_message(
                    "Something went wrong. Please try again.", ephemeral=True
                )

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        await self.remote.close()
        if not self.bot.is_closed():
            await self.bot.close()

    async def run(self) -> None:
        self.configure_features()
        try:
            async with self.bot:
                await self.bot.start(self.config.discord_token)
        finally:
            await self.shutdown()

    @classmethod
    def create(cls) -> "BotRuntime":
        config = EnvironmentConfig.load()
        return cls(config)


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    runtime = BotRuntime.create()
    await runtime.run()


__all__ = ["BotRuntime", "LOG_FORMAT", "main"]
