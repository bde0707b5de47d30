"""Central time utilities for the application.

Timestamps are stored as naive UTC datetimes (TIMESTAMP WITHOUT TIME ZONE),
so every writer goes through these helpers instead of datetime.utcnow().
"""
from datetime import date, datetime, timezone


def utc_now() -> datetime:
    """Return current UTC time as a naive datetime object."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_today() -> date:
    """Return the current UTC calendar date.

    Due-date comparisons (expiry and recurrence sweeps) use this so that a
    server running in a non-UTC timezone does not flip runs early or late.
    """
    return utc_now().date()
