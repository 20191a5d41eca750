"""Formatting helpers for millisecond offsets and durations."""

from __future__ import annotations


def format_seconds(seconds: int) -> str:
    """Format seconds as ``MM:SS``."""
    minutes, secs = divmod(seconds, 60)
    return f"{minutes:02d}:{secs:02d}"


def format_ms(ms: int) -> str:
    """Format milliseconds as ``MM:SS``."""
    return format_seconds(ms // 1000)


def format_seconds_long(seconds: int) -> str:
    """Format seconds as ``H:MM:SS`` when over an hour, else ``MM:SS``."""
    hours, rem = divmod(seconds, 3600)
    if hours > 0:
        minutes, secs = divmod(rem, 60)
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return format_seconds(seconds)


def format_range(start_ms: int, end_ms: int) -> str:
    return f"{format_ms(start_ms)} - {format_ms(end_ms)}"


def format_duration(seconds: int) -> str:
    """Human-readable duration, e.g. ``"45 seconds"``, ``"2 minutes"``, ``"1h 5m"``."""
    if seconds < 60:
        return f"{seconds} seconds"
    if seconds < 3600:
        minutes = seconds // 60
        return f"{minutes} minute{'' if minutes == 1 else 's'}"
    hours, rem = divmod(seconds, 3600)
    minutes = rem // 60
    if minutes == 0:
        return f"{hours} hour{'' if hours == 1 else 's'}"
    return f"{hours}h {minutes}m"
