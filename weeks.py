"""Week window arithmetic.

Two week conventions are in use and they do not agree, so both are exposed
as named policies rather than folded into one:

* :data:`DASHBOARD_WEEK` – Monday 00:00:00.000 to Sunday 23:59:59.999 in the
  application timezone. The weekly dashboard uses it.
* :data:`QUOTA_WEEK` – Monday 00:00:00.000 to Saturday 23:59:59.000, always
  in UTC. The weekly quota check uses it, which means a Sunday class never
  counts towards any week's quota.

Windows are inclusive at both ends.
"""

from __future__ import annotations

from collections import namedtuple
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional, Union
from zoneinfo import ZoneInfo

DAYS = ('Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun')

WeekPolicy = namedtuple('WeekPolicy', 'name last_day end_time fixed_zone')

DASHBOARD_WEEK = WeekPolicy('dashboard', 6, time(23, 59, 59, 999000), None)
QUOTA_WEEK = WeekPolicy('quota', 5, time(23, 59, 59), 'UTC')

WeekWindow = namedtuple('WeekWindow', 'start end')


class WeekOutOfRange(ValueError):
    """The week offset lands outside the representable calendar."""


Instant = Union[datetime, str]


def get_zone(name: Optional[Union[str, tzinfo]]) -> tzinfo:
    """Return a tzinfo for ``name``; ``None`` and ``"UTC"`` give UTC."""

    if isinstance(name, tzinfo):
        return name
    if not name or name.upper() == 'UTC':
        return timezone.utc
    return ZoneInfo(name)


def parse_instant(value: Optional[Instant]) -> Optional[datetime]:
    """Coerce a stored timestamp into an aware datetime.

    Accepts datetimes and ISO-8601 strings (a trailing ``Z`` included).
    Naive values are taken to be UTC. Empty values give ``None``.
    """

    if value is None or value == '':
        return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        value = datetime.fromisoformat(text)
    elif isinstance(value, date) and not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    elif not isinstance(value, datetime):
        raise TypeError(f"cannot read a timestamp from {type(value).__name__}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def week_bounds(reference: Instant, offset: int = 0, tz: Optional[Union[str, tzinfo]] = 'UTC',
                policy: WeekPolicy = DASHBOARD_WEEK) -> WeekWindow:
    """Return the week window containing ``reference`` shifted by ``offset`` weeks.

    The calendar day of the reference is taken in ``tz`` unless the policy
    pins its own zone. ``start`` is that week's Monday at midnight and ``end``
    is the policy's last day at the policy's end time.
    """

    zone = get_zone(policy.fixed_zone or tz)
    local = parse_instant(reference).astimezone(zone)
    try:
        shifted = local.date() + timedelta(weeks=offset)
        monday = shifted - timedelta(days=shifted.weekday())
        last_day = monday + timedelta(days=policy.last_day)
    except OverflowError:
        raise WeekOutOfRange(f"week offset {offset} is out of range") from None
    start = datetime.combine(monday, time.min, tzinfo=zone)
    end = datetime.combine(last_day, policy.end_time, tzinfo=zone)
    return WeekWindow(start, end)


def window_contains(window: WeekWindow, instant: Optional[Instant]) -> bool:
    moment = parse_instant(instant)
    return moment is not None and window.start <= moment <= window.end


def weekday_label(instant: Instant, tz: Optional[Union[str, tzinfo]] = 'UTC') -> str:
    """Return ``Mon`` .. ``Sun`` for the local calendar day of ``instant``."""

    return DAYS[parse_instant(instant).astimezone(get_zone(tz)).weekday()]


def local_hour(instant: Instant, tz: Optional[Union[str, tzinfo]] = 'UTC') -> int:
    return parse_instant(instant).astimezone(get_zone(tz)).hour


def format_week_label(window: WeekWindow) -> str:
    """Human label such as ``Jan 1 – Jan 7, 2024``."""

    start, end = window
    return f"{start:%b} {start.day} – {end:%b} {end.day}, {end.year}"


def format_hour(hour: int) -> str:
    """``0`` -> ``12:00 AM``, ``13`` -> ``1:00 PM``."""

    suffix = 'PM' if hour >= 12 else 'AM'
    return f"{hour % 12 or 12}:00 {suffix}"
