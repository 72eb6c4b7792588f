# =============================================================================
# File: app/utils/datetime_utils.py
# Description: Datetime utilities (UTC clock)
# =============================================================================

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
