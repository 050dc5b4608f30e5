"""Render short MP4 videos with FFmpeg and publish them to object storage."""

__version__ = "0.1.0"
