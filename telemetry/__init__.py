"""Rolling playback telemetry."""

from .rolling import PlaybackTelemetry, RollingSeries

__all__ = ["PlaybackTelemetry", "RollingSeries"]
