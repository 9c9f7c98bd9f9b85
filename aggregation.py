"""Attendance aggregation over a snapshot of classes and attendance rows.

:func:`aggregate` is a pure function: it reads the rows it is given and
returns fresh dictionaries, so calling it twice on the same snapshot gives
the same answer. Only attendance rows whose ``class_id`` belongs to one of
the given classes are counted; callers pass exactly the classes the viewer
may see.
"""

from collections import Counter
from typing import Any, Dict, Iterable, List, Mapping

from weeks import DAYS, local_hour, parse_instant, weekday_label

UNSPECIFIED_LEVEL = 'Unspecified'
POPULAR_TIMES_LIMIT = 10
TOP_STUDENTS_LIMIT = 15


def level_label(cls: Mapping[str, Any]) -> str:
    return cls.get('level') or UNSPECIFIED_LEVEL


def relevant_attendance(classes: Iterable[Mapping[str, Any]],
                        attendance: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    """Attendance rows that belong to one of ``classes``."""

    class_ids = {c['id'] for c in classes}
    return [a for a in attendance if a.get('class_id') in class_ids]


def count_per_class(classes, attendance) -> Dict[Any, int]:
    """Attendance count for every class; classes nobody attended map to 0."""

    counts = {c['id']: 0 for c in classes}
    for row in attendance:
        if row.get('class_id') in counts:
            counts[row['class_id']] += 1
    return counts


def aggregate(classes, attendance, tz='UTC') -> Dict[str, Any]:
    """Summarise ``attendance`` over ``classes``.

    Returns a dict with:

    * ``per_class`` – ``{class_id: attendance count}``
    * ``per_day`` – ``{"Mon".."Sun": {"class_count", "attendance_count"}}``
      for classes that have a ``date_time``, bucketed by local weekday
    * ``per_level`` – ``{level: class count}``, empty levels as ``Unspecified``
    * ``popular_times`` – up to 10 ``{"hour", "count"}`` entries, busiest
      first, ties by earlier hour
    * ``top_students`` – up to 15 ``{"student_id", "count"}`` entries, most
      attended first, ties in order of first appearance
    """

    classes = list(classes)
    attendance = relevant_attendance(classes, attendance)
    per_class = count_per_class(classes, attendance)

    per_day = {day: {'class_count': 0, 'attendance_count': 0} for day in DAYS}
    hours: Counter = Counter()
    per_level: Dict[str, int] = {}
    for cls in classes:
        label = level_label(cls)
        per_level[label] = per_level.get(label, 0) + 1
        when = parse_instant(cls.get('date_time'))
        if when is None:
            continue
        bucket = per_day[weekday_label(when, tz)]
        bucket['class_count'] += 1
        bucket['attendance_count'] += per_class[cls['id']]
        hours[local_hour(when, tz)] += 1

    popular_times = [
        {'hour': hour, 'count': count}
        for hour, count in sorted(hours.items(), key=lambda item: (-item[1], item[0]))
    ][:POPULAR_TIMES_LIMIT]

    # most_common keeps first-seen order among equal counts.
    students = Counter(row.get('student_id') for row in attendance)
    top_students = [
        {'student_id': student_id, 'count': count}
        for student_id, count in students.most_common(TOP_STUDENTS_LIMIT)
    ]

    return {
        'per_class': per_class,
        'per_day': per_day,
        'per_level': per_level,
        'popular_times': popular_times,
        'top_students': top_students,
    }
