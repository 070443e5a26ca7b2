from .client import DiscordPlayback, DiscordVoiceAgent, count_participants, make_intents

__all__ = ["DiscordVoiceAgent", "DiscordPlayback", "count_participants", "make_intents"]
