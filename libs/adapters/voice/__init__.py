from .fakes import FakePlayback, FakeVoiceAgent

__all__ = ["FakeVoiceAgent", "FakePlayback"]
