"""Admin slash commands for tracked tournaments and matches."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import discord
from discord import app_commands

from fightrise.lifecycle import MatchLifecycle
from fightrise.models import (
    PHASE_CREATED,
    EntrantLink,
    Tournament,
    utc_now_iso,
)
from fightrise.notifications import NotificationChannel
from fightrise.remote import RemoteSourceError, StartGGClient
from fightrise.scheduler import PollScheduler
from fightrise.storage import TournamentStorage
from fightrise.validation import InvalidValueError, normalize_tournament_slug

log = logging.getLogger("fightrise.commands")


@dataclass(slots=True)
class CommandServices:
    storage: TournamentStorage
    lifecycle: MatchLifecycle
    scheduler: PollScheduler
    remote: StartGGClient
    notifier: NotificationChannel | None = None
    admin_role_id: int | None = None


def is_tournament_admin(member: discord.abc.User, admin_role_id: int | None) -> bool:
    permissions = getattr(member, "guild_permissions", None)
    if permissions is not None and getattr(permissions, "manage_guild", False):
        return True
    if admin_role_id is None:
        return False
    for role in getattr(member, "roles", None) or []:
        if getattr(role, "id", None) == admin_role_id:
            return True
    return False


def _format_time(value) -> str:
    if value is None:
        return "never"
    return f"<t:{int(value.timestamp())}:R>"


def build_tournament_group(services: CommandServices) -> app_commands.Group:
    group = app_commands.Group(
        name="tournament", description="Manage start.gg tournaments tracked by the bot"
    )

    async def require_admin(interaction: discord.Interaction) -> bool:
        if is_tournament_admin(interaction.user, services.admin_role_id):
            return True
        await interaction.response.send_message(
            "Only tournament admins may use this command.", ephemeral=True
        )
        return False

    @group.command(name="add", description="Track a start.gg tournament in this channel")
    @app_commands.describe(
        slug="start.gg tournament slug or URL",
        require_check_in="Require players to check in before reporting",
        check_in_minutes="Minutes players have to check in once a match is called",
    )
    async def add_tournament(
        interaction: discord.Interaction,
        slug: str,
        require_check_in: bool = True,
        check_in_minutes: app_commands.Range[int, 1, 120] = 10,
    ) -> None:
        if not await require_admin(interaction):
            return
        try:
            normalized = normalize_tournament_slug(slug)
        except InvalidValueError as exc:
            await interaction.response.send_message(str(exc), ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            remote_tournament = await services.remote.fetch_tournament(normalized)
        except RemoteSourceError as exc:
            log.warning("start.gg lookup failed for %s: %s", normalized, exc)
            await interaction.followup.send(
                "Could not reach start.gg. Try again shortly.", ephemeral=True
            )
            return
        if remote_tournament is None:
            await interaction.followup.send(
                f"No start.gg tournament found for `{normalized}`.", ephemeral=True
            )
            return

        existing = await asyncio.to_thread(
            services.storage.get_tournament, remote_tournament.tournament_id
        )
        tournament = Tournament(
            tournament_id=remote_tournament.tournament_id,
            slug=normalized,
            name=remote_tournament.name,
            phase=existing.phase if existing else PHASE_CREATED,
            updated_at=utc_now_iso(),
            guild_id=interaction.guild_id,
            channel_id=interaction.channel_id,
            require_check_in=require_check_in,
            check_in_window_minutes=int(check_in_minutes),
            last_polled_at=existing.last_polled_at if existing else None,
        )
        await asyncio.to_thread(services.storage.save_tournament, tournament)
        services.scheduler.schedule_poll(tournament.tournament_id, 0)
        log.info(
            "Tournament %s (%s) bound to channel %s by %s",
            tournament.tournament_id,
            normalized,
            interaction.channel_id,
            interaction.user.id,
        )
        await interaction.followup.send(
            f"Now tracking **{tournament.name}** (`{tournament.tournament_id}`). "
            "Matches will be posted as threads in this channel.",
            ephemeral=True,
        )

    @group.command(name="link", description="Link a start.gg entrant to a Discord member")
    @app_commands.describe(
        tournament_id="Tracked tournament id",
        entrant_id="start.gg entrant id",
        member="Discord member playing as this entrant",
    )
    async def link_entrant(
        interaction: discord.Interaction,
        tournament_id: str,
        entrant_id: str,
        member: discord.Member,
    ) -> None:
        if not await require_admin(interaction):
            return
        tournament = await asyncio.to_thread(services.storage.get_tournament, tournament_id)
        if tournament is None:
            await interaction.response.send_message("Tournament not found.", ephemeral=True)
            return
        link = EntrantLink(
            tournament_id=tournament_id,
            entrant_id=entrant_id.strip(),
            discord_id=member.id,
        )
        linked = await services.lifecycle.link_entrant(link)
        message = f"Linked entrant `{link.entrant_id}` to {member.mention}."
        if linked:
            message += f" Updated {len(linked)} open match(es)."
        await interaction.response.send_message(message, ephemeral=True)

    @group.command(name="status", description="Show polling status for a tournament")
    async def poll_status(interaction: discord.Interaction, tournament_id: str) -> None:
        status = await services.scheduler.get_poll_status(tournament_id)
        if status is None:
            await interaction.response.send_message("Tournament not found.", ephemeral=True)
            return
        interval = f"{status.interval:.0f}s" if status.interval is not None else "stopped"
        lines = [
            f"Phase: **{status.phase}**",
            f"Last polled: {_format_time(status.last_polled_at)}",
            f"Next poll: {_format_time(status.next_poll_at)}",
            f"Interval: {interval}",
        ]
        if status.in_flight:
            lines.append("A poll is running right now.")
        await interaction.response.send_message("\n".join(lines), ephemeral=True)

    @group.command(name="poll", description="Poll a tournament immediately")
    async def poll_now(interaction: discord.Interaction, tournament_id: str) -> None:
        if not await require_admin(interaction):
            return
        trigger = await services.scheduler.trigger_immediate_poll(tournament_id)
        await interaction.response.send_message(trigger.message, ephemeral=True)

    @group.command(name="dq", description="Disqualify a player from a match")
    @app_commands.describe(
        match_id="Match id", slot="Player slot to disqualify", reason="Reason"
    )
    async def disqualify(
        interaction: discord.Interaction,
        match_id: str,
        slot: app_commands.Range[int, 1, 2],
        reason: str = "",
    ) -> None:
        if not await require_admin(interaction):
            return
        result = await services.lifecycle.disqualify_player(
            match_id, int(slot), reason, interaction.user.id
        )
        await interaction.response.send_message(result.message, ephemeral=True)
        match = result.match
        if result.success and match is not None and match.conversation_id:
            if services.notifier is not None:
                await services.notifier.post_message(match.conversation_id, result.message)
                await services.notifier.archive(match.conversation_id)

    @group.command(name="escalate", description="Flag a match for organizer review")
    async def escalate(
        interaction: discord.Interaction, match_id: str, reason: str = ""
    ) -> None:
        if not await require_admin(interaction):
            return
        result = await services.lifecycle.escalate_dispute(
            match_id, reason, interaction.user.id
        )
        await interaction.response.send_message(result.message, ephemeral=True)
        match = result.match
        if result.success and match is not None and match.conversation_id:
            if services.notifier is not None:
                await services.notifier.post_message(
                    match.conversation_id,
                    "⚠️ This match has been flagged for organizer review.",
                )

    return group


__all__ = ["CommandServices", "build_tournament_group", "is_tournament_admin"]
