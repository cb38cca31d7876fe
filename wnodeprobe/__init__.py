"""wnodeprobe - two-node Whisper messaging harness."""

__version__ = "0.1.0"
__logo__ = "📡"
