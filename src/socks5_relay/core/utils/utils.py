"""Common utility functions."""

from typing import Final

SIZE_UNITS: Final = ("B", "KB", "MB", "GB", "TB")


def format_bytes(bytes_: float) -> str:
    """Format a byte count for display, e.g. ``2048`` -> ``"2.0 KB"``."""
    value = float(bytes_)
    for unit in SIZE_UNITS[:-1]:
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} {SIZE_UNITS[-1]}"
