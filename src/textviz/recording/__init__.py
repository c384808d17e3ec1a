from __future__ import annotations

from .recorder import MIME_PREFERENCES, Recorder, Recording, recording_filename

__all__ = ["MIME_PREFERENCES", "Recorder", "Recording", "recording_filename"]
