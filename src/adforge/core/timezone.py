"""UTC timezone enforcement and timestamp helper.

Sets the TZ environment variable to UTC so datetime behavior is consistent
across environments. All persisted timestamps are naive UTC.
"""

import os
from datetime import datetime, timezone

# Set UTC timezone for the entire application
os.environ["TZ"] = "UTC"


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime (database column convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
