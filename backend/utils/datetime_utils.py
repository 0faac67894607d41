"""
UTC timestamp helpers for match completion times and stats rows.
"""

from datetime import datetime
from typing import Optional
import pytz


def utcnow() -> datetime:
    """Timezone-aware current time in UTC (pytz)."""
    return datetime.now(pytz.UTC)


def isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    """Serialize an optional datetime for API responses."""
    return value.isoformat() if value else None
