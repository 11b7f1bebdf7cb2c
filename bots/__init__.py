"""Discord runtime for the fightrise tournament core.

The runtime binds the core services to a discord.py client: match threads,
button routing and the admin slash commands.
"""

__all__ = ["commands", "config", "discord_channel", "interactions", "runtime"]
