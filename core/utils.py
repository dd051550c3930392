"""Shared utility functions for the claim bot core modules.

Provides human-readable duration formatting for log lines and a couple of
small normalisation helpers used by configuration and the game registry.
"""

from datetime import timedelta
from typing import Union

_UNITS = (("h", 3600), ("m", 60), ("s", 1))


def as_seconds(duration: Union[int, float, timedelta]) -> float:
    """Return *duration* in seconds, accepting numbers or ``timedelta``."""
    if isinstance(duration, timedelta):
        return duration.total_seconds()
    return float(duration)


def format_duration(duration: Union[int, float, timedelta]) -> str:
    """Format a duration as ``"1h 2m 3s"``.

    Zero components are omitted and fractions of a second are dropped.
    A duration shorter than one second formats as ``"0s"``.

    Args:
        duration: Seconds (int/float) or a ``timedelta``.

    Returns:
        Compact readable string.
    """
    remaining = max(int(as_seconds(duration)), 0)
    parts = []
    for name, scale in _UNITS:
        count, remaining = divmod(remaining, scale)
        if count > 0:
            parts.append(f"{count}{name}")
    return " ".join(parts) or "0s"


def normalize_name(name: str) -> str:
    """Lower-case *name* and drop ``_``, ``-`` and spaces (``"Okay_Eg"`` -> ``"okayeg"``)."""
    return name.lower().replace("_", "").replace("-", "").replace(" ", "")


def normalize_channel(channel: str) -> str:
    """Strip a leading ``#`` and lower-case a channel name."""
    return channel.strip().lstrip("#").lower()
