"""Client-side orchestration of audio playback across a cluster of remote audio nodes."""

__version__ = "0.1.0"
