# Time_Utils.py
# Description: Timestamp helpers shared by the local store and the remote adapter.
#
# Imports
from datetime import datetime, timezone
from typing import Optional, Union
#
#######################################################################################################################
#
# Functions:

def format_utc_timestamp(value: datetime) -> str:
    """
    Formats a datetime as the store's canonical timestamp string.

    Example: "2023-10-27T10:30:00.123Z"

    Naive datetimes are assumed to already be in UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def get_current_utc_timestamp_iso() -> str:
    """Returns the current UTC time in the canonical ISO 8601 form with millisecond precision."""
    return format_utc_timestamp(datetime.now(timezone.utc))


def parse_timestamp(value: str) -> datetime:
    """
    Parses an ISO 8601 / RFC 3339 timestamp into an aware UTC datetime.

    Raises:
        ValueError: If the string cannot be parsed.
    """
    parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_timestamp(value: Optional[str]) -> Optional[str]:
    """
    Rewrites a timestamp from any ISO 8601 variant into the canonical form.

    Stored timestamps are compared as strings, so everything written to the
    store has to share one layout.
    """
    if value is None:
        return None
    return format_utc_timestamp(parse_timestamp(value))


def epoch_to_timestamp(epoch_seconds: Union[int, float]) -> str:
    """Converts epoch seconds (as returned by the auth endpoint) into the canonical form."""
    return format_utc_timestamp(datetime.fromtimestamp(epoch_seconds, tz=timezone.utc))

#
# End of Time_Utils.py
#######################################################################################################################
