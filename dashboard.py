"""View models for the Weekly View and Insights dashboards.

:class:`DashboardAssembler` fetches a snapshot (classes the viewer may see,
their attendance, students, teacher names) and shapes it with
:func:`aggregation.aggregate` and the week helpers. It never writes.

Visibility: a ``Manager`` sees every teacher's classes and gets a teacher
name per class; anyone else sees only classes whose ``teacher_id`` is their
own id.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from aggregation import aggregate, relevant_attendance
from app_logging import get_logger
from store import DataStore, StoreError
from viewer_session import Viewer
from weeks import (
    DASHBOARD_WEEK,
    DAYS,
    format_hour,
    format_week_label,
    parse_instant,
    week_bounds,
    window_contains,
)

_logger = get_logger("classroom.dashboard")

POPULAR_CLASSES_LIMIT = 10
POPULAR_LEVELS_LIMIT = 6
CHART_LABEL_LENGTH = 18


def _by_date_time(cls: Dict[str, Any]) -> datetime:
    return parse_instant(cls['date_time'])


def _average(total: int, count: int) -> str:
    return f"{total / count:.1f}" if count else '0'


class DashboardAssembler:
    def __init__(self, store: DataStore, class_table: str, tz: str = 'UTC') -> None:
        self.store = store
        self.class_table = class_table
        self.tz = tz

    # -- snapshot ---------------------------------------------------------

    def visible_classes(self, viewer: Viewer) -> List[Dict[str, Any]]:
        eq = None if viewer.is_manager else {'teacher_id': viewer.id}
        return self.store.select(self.class_table, eq=eq)

    def teacher_names(self, classes) -> Dict[Any, str]:
        """Teacher id -> display name. Best effort: failures give ``{}``."""

        teacher_ids = sorted({c['teacher_id'] for c in classes if c.get('teacher_id') is not None})
        if not teacher_ids:
            return {}
        try:
            teachers = self.store.select('teachers', columns=('id', 'name', 'email'), in_={'id': teacher_ids})
        except StoreError as exc:
            _logger.warning("teacher name lookup failed", extra={"error": exc.message})
            return {}
        return {t['id']: t.get('name') or t.get('email') for t in teachers}

    # -- weekly view ------------------------------------------------------

    def weekly_view(self, viewer: Viewer, week_offset: int = 0, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        window = week_bounds(now, week_offset, self.tz, DASHBOARD_WEEK)

        week_classes = sorted(
            (c for c in self.visible_classes(viewer) if window_contains(window, c.get('date_time'))),
            key=_by_date_time,
        )
        class_ids = [c['id'] for c in week_classes]
        attendance = self.store.select('attendance', columns=('class_id', 'student_id'),
                                       in_={'class_id': class_ids}) if class_ids else []
        summary = aggregate(week_classes, attendance, self.tz)
        per_class = summary['per_class']
        names = self.teacher_names(week_classes) if viewer.is_manager else {}

        days: Dict[str, List[Dict[str, Any]]] = {day: [] for day in DAYS}
        chart = []
        for cls in week_classes:
            when = parse_instant(cls['date_time']).astimezone(window.start.tzinfo)
            entry = dict(cls, attendance_count=per_class[cls['id']])
            if viewer.is_manager:
                entry['teacher_name'] = names.get(cls.get('teacher_id'))
            days[DAYS[when.weekday()]].append(entry)

            label = f"{when:%a, %b} {when.day}, {when:%I:%M %p}"
            chart.append({
                'name': label if len(label) <= CHART_LABEL_LENGTH else label[:CHART_LABEL_LENGTH] + '…',
                'full_name': label,
                'attendance': per_class[cls['id']],
                'level': cls.get('level') or '—',
            })

        daily_totals = [
            {'day': day,
             'classes': summary['per_day'][day]['class_count'],
             'attendance': summary['per_day'][day]['attendance_count']}
            for day in DAYS
        ]

        return {
            'week': {
                'offset': week_offset,
                'previous_offset': week_offset - 1,
                'next_offset': week_offset + 1,
                'start': window.start,
                'end': window.end,
                'label': format_week_label(window),
            },
            'days': days,
            'chart': chart,
            'daily_totals': daily_totals,
            'total_classes': len(week_classes),
            'total_attendance': sum(per_class.values()),
            'teacher_names': names,
        }

    # -- insights ---------------------------------------------------------

    def insights(self, viewer: Viewer, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        classes = self.visible_classes(viewer)
        attendance = relevant_attendance(
            classes, self.store.select('attendance', columns=('class_id', 'student_id', 'created_at')))
        students = {s['id']: s for s in self.store.select('students',
                                                          columns=('id', 'name', 'email', 'weekly_classes'))}
        summary = aggregate(classes, attendance, self.tz)
        per_class = summary['per_class']

        dated = [c for c in classes if parse_instant(c.get('date_time')) is not None]
        past_ids = {c['id'] for c in dated if _by_date_time(c) < now}

        # sorted() is stable, so equal counts keep store order.
        popular_classes = sorted(
            (dict(c, attendance_count=per_class[c['id']]) for c in dated),
            key=lambda c: c['attendance_count'],
            reverse=True,
        )[:POPULAR_CLASSES_LIMIT]

        popular_levels = sorted(
            ({'level': level, 'count': count} for level, count in summary['per_level'].items()),
            key=lambda item: item['count'],
            reverse=True,
        )[:POPULAR_LEVELS_LIMIT]

        top_students = []
        for item in summary['top_students']:
            student = students.get(item['student_id'], {})
            top_students.append(dict(item, name=student.get('name'), email=student.get('email'),
                                     weekly_classes=student.get('weekly_classes')))

        past_attendance = sum(1 for a in attendance if a['class_id'] in past_ids)
        return {
            'summary': {
                'total_classes': len(classes),
                'past_classes': len(past_ids),
                'future_classes': len(dated) - len(past_ids),
                'total_attendance': len(attendance),
                'unique_students': len({a['student_id'] for a in attendance}),
                'avg_attendance_per_class': _average(past_attendance, len(past_ids)),
            },
            'popular_classes': popular_classes,
            'popular_times': [dict(t, label=format_hour(t['hour'])) for t in summary['popular_times']],
            'top_students': top_students,
            'popular_levels': popular_levels,
        }
