"""
Small shared helpers.
"""

from datetime import UTC, datetime
from uuid import uuid4


def utc_now() -> datetime:
    """
    Current UTC time as a naive datetime.

    All timestamp columns hold naive UTC values so that lock-expiry and
    visibility comparisons behave the same on every database backend.
    """
    return datetime.now(UTC).replace(tzinfo=None)


def new_id() -> str:
    """Generate an opaque unique identifier."""
    return str(uuid4())
