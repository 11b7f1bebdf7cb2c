"""discord.py implementation of the match notification channel.

Each match gets a thread under the tournament's text channel. Prompts are
rendered as an embed plus a row of buttons whose custom ids are routed back
through :mod:`bots.interactions`.
"""

from __future__ import annotations

import logging
from typing import Final

import discord

from fightrise.notifications import NotificationChannel, Prompt

log = logging.getLogger("fightrise.discord")

THREAD_AUTO_ARCHIVE_MINUTES: Final = 1440

_BUTTON_STYLES: Final = {
    "primary": discord.ButtonStyle.primary,
    "success": discord.ButtonStyle.success,
    "danger": discord.ButtonStyle.danger,
    "secondary": discord.ButtonStyle.secondary,
}


class ConversationUnavailableError(RuntimeError):
    """Raised when a match thread cannot be opened under the configured channel."""


def build_embed(prompt: Prompt) -> discord.Embed:
    embed = discord.Embed(
        title=prompt.title,
        description=prompt.description,
        color=prompt.color,
    )
    for field in prompt.fields:
        embed.add_field(name=field.name, value=field.value, inline=field.inline)
    if prompt.footer:
        embed.set_footer(text=prompt.footer)
    return embed


def build_view(prompt: Prompt) -> discord.ui.View | None:
    if not prompt.buttons:
        return None
    view = discord.ui.View(timeout=None)
    for button in prompt.buttons:
        view.add_item(
            discord.ui.Button(
                label=button.label,
                custom_id=button.custom_id,
                style=_BUTTON_STYLES.get(button.style, discord.ButtonStyle.primary),
            )
        )
    return view


class DiscordNotificationChannel(NotificationChannel):
    def __init__(self, client: discord.Client) -> None:
        self._client = client

    async def _get_channel(self, channel_id: int):
        channel = self._client.get_channel(channel_id)
        if channel is not None:
            return channel
        return await self._client.fetch_channel(channel_id)

    async def _get_thread(self, conversation_id: str) -> discord.Thread | None:
        try:
            channel = await self._get_channel(int(conversation_id))
        except (discord.NotFound, discord.Forbidden) as exc:
            log.warning("Thread %s is not accessible: %s", conversation_id, exc)
            return None
        if not isinstance(channel, discord.Thread):
            log.warning("Channel %s is not a thread", conversation_id)
            return None
        return channel

    async def create_conversation(self, parent_channel_id: int, title: str) -> str:
        channel = await self._get_channel(parent_channel_id)
        if not isinstance(channel, discord.TextChannel):
            raise ConversationUnavailableError(
                f"Channel {parent_channel_id} is not a text channel"
            )
        thread = await channel.create_thread(
            name=title,
            type=discord.ChannelType.public_thread,
            auto_archive_duration=THREAD_AUTO_ARCHIVE_MINUTES,
        )
        log.info("Created thread %s (%s)", thread.id, title)
        return str(thread.id)

    async def post_prompt(self, conversation_id: str, prompt: Prompt) -> None:
        thread = await self._get_thread(conversation_id)
        if thread is None:
            return
        view = build_view(prompt)
        try:
            if view is None:
                await thread.send(embed=build_embed(prompt))
            else:
                await thread.send(embed=build_embed(prompt), view=view)
        except discord.HTTPException as exc:
            log.warning("Failed to post prompt in thread %s: %s", conversation_id, exc)

    async def post_message(self, conversation_id: str, content: str) -> None:
        thread = await self._get_thread(conversation_id)
        if thread is None:
            return
        try:
            await thread.send(content)
        except discord.HTTPException as exc:
            log.warning("Failed to post message in thread %s: %s", conversation_id, exc)

    async def add_participant(self, conversation_id: str, participant_id: int) -> bool:
        thread = await self._get_thread(conversation_id)
        if thread is None:
            return False
        try:
            await thread.add_user(discord.Object(id=participant_id))
        except discord.HTTPException as exc:
            log.warning(
                "Failed to add %s to thread %s: %s", participant_id, conversation_id, exc
            )
            return False
        return True

    async def archive(self, conversation_id: str) -> None:
        thread = await self._get_thread(conversation_id)
        if thread is None or thread.archived:
            return
        try:
            await thread.edit(archived=True)
        except discord.HTTPException as exc:
            log.warning("Failed to archive thread %s: %s", conversation_id, exc)

    async def delete_conversation(self, conversation_id: str) -> None:
        thread = await self._get_thread(conversation_id)
        if thread is None:
            return
        try:
            await thread.delete()
        except discord.NotFound:
            return
        except discord.HTTPException as exc:
            log.warning("Failed to delete thread %s: %s", conversation_id, exc)


__all__ = [
    "ConversationUnavailableError",
    "DiscordNotificationChannel",
    "build_embed",
    "build_view",
]
