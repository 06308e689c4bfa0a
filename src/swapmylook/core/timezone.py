"""UTC timezone enforcement.

This module sets the TZ environment variable to UTC to ensure
consistent datetime behavior across all environments.
"""

import os
from datetime import datetime, timezone

# Set UTC timezone for the entire application
os.environ["TZ"] = "UTC"


def utc_now() -> datetime:
    """Current UTC time as a naive datetime (the storage convention for all columns)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
