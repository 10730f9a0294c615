"""
loopcast - supervised 24/7 looping of a video library to an RTMP ingest.

The package wraps a single ffmpeg encoder process per loop iteration,
tracks what is currently on air, and keeps enough state on disk to report
continuity across restarts.
"""

__version__ = "1.0.0"
