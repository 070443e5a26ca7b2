from .agent import RemotePlayback, RemoteVoiceAgent

__all__ = ["RemoteVoiceAgent", "RemotePlayback"]
