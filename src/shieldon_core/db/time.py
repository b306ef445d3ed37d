# src/shieldon_core/db/time.py
"""Time utilities shared by storage records and the reset cycle."""

from datetime import UTC, datetime


def start_of_day(timestamp: float) -> datetime:
    """Return midnight (UTC) of the day containing ``timestamp``."""
    moment = datetime.fromtimestamp(timestamp, UTC)
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)
