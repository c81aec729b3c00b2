"""
Time zone helpers

Vendor timestamps are naive wall-clock times in New York; requests and the
command surface work in UTC. Conversions go through pytz so daylight saving
transitions are applied the way the exchange calendar does.
"""

from datetime import datetime

import pytz

UTC = pytz.utc
NEW_YORK = pytz.timezone('America/New_York')
# Eastern time without daylight saving, UTC-5 all year
EASTERN_STANDARD = pytz.timezone('EST')


def convert_time_zone(value: datetime, from_tz, to_tz) -> datetime:
    """Reinterpret a naive wall-clock time from one zone as naive wall-clock time in another"""
    localized = from_tz.localize(value.replace(tzinfo=None))
    return localized.astimezone(to_tz).replace(tzinfo=None)


def convert_from_utc(value: datetime, to_tz) -> datetime:
    """UTC instant (aware or naive) -> naive wall-clock time in to_tz"""
    if value.tzinfo is None:
        value = UTC.localize(value)
    return value.astimezone(to_tz).replace(tzinfo=None)


def convert_to_utc(value: datetime, from_tz) -> datetime:
    """Naive wall-clock time in from_tz -> aware UTC instant"""
    return from_tz.localize(value.replace(tzinfo=None)).astimezone(UTC)
