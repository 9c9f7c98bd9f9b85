"""Weekly class quota for students.

A student's ``weekly_classes`` caps how many classes they may attend in one
:data:`weeks.QUOTA_WEEK`. ``None`` means unlimited; ``0`` means no classes.
The check is computed here; whether it blocks access is decided by the
``ENFORCE_WEEKLY_QUOTA`` setting, which is off by default.
"""

import enum
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

from weeks import QUOTA_WEEK, parse_instant, week_bounds, window_contains


class QuotaState(enum.Enum):
    UNLIMITED = 'unlimited'
    WITHIN = 'within'
    AT_LIMIT = 'at_limit'


def quota_limit(student: Mapping[str, Any]) -> Optional[int]:
    return student.get('weekly_classes')


def weekly_quota(student: Mapping[str, Any], attended_classes: Iterable[Mapping[str, Any]],
                 now: Optional[datetime] = None) -> Dict[str, Any]:
    """Report how much of the weekly quota ``student`` has used.

    ``attended_classes`` are the class rows the student has attendance for.
    Only those whose ``date_time`` falls in the current quota week count.
    """

    window = week_bounds(now or datetime.now(timezone.utc), 0, policy=QUOTA_WEEK)
    this_week = sorted(
        (c for c in attended_classes if window_contains(window, c.get('date_time'))),
        key=lambda c: parse_instant(c['date_time']),
    )
    limit = quota_limit(student)
    attended = len(this_week)
    if limit is None:
        state = QuotaState.UNLIMITED
    elif attended >= limit:
        state = QuotaState.AT_LIMIT
    else:
        state = QuotaState.WITHIN
    return {
        'limit': limit,
        'attended_this_week': attended,
        'state': state.value,
        'week_start': window.start,
        'week_end': window.end,
        'classes': [
            {'class_id': c['id'], 'date_time': c.get('date_time'), 'level': c.get('level'), 'url': c.get('url')}
            for c in this_week
        ],
    }


def is_blocked(report: Mapping[str, Any]) -> bool:
    return report['state'] == QuotaState.AT_LIMIT.value
