"""
Timezone utilities for rendering signal timestamps in the operator's zone.
"""
from datetime import datetime, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Timezone-aware current UTC time used for every signal timestamp"""
    return datetime.now(timezone.utc)


class TimezoneConverter:
    """Handles timezone conversions for notifications"""

    def __init__(self, timezone: str = "UTC"):
        """
        Initialize timezone converter.

        Args:
            timezone: IANA timezone name
        """
        self.timezone = timezone
        self.tz = ZoneInfo(timezone)

    def utc_to_local(self, utc_dt: datetime) -> datetime:
        """
        Convert UTC datetime to local timezone.

        Args:
            utc_dt: UTC datetime (naive or aware)

        Returns:
            Datetime in local timezone
        """
        if utc_dt.tzinfo is None:
            # Naive datetimes are stored as UTC
            utc_dt = utc_dt.replace(tzinfo=ZoneInfo("UTC"))

        return utc_dt.astimezone(self.tz)

    def format_local(self, utc_dt: datetime, fmt: str = "%Y-%m-%d %H:%M:%S %Z") -> str:
        """Format UTC datetime as local timezone string"""
        return self.utc_to_local(utc_dt).strftime(fmt)
