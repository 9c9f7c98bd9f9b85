from conftest import utc
from quota import QuotaState, is_blocked, weekly_quota

NOW = utc(2024, 1, 4, 12)  # Thursday


def _classes(*moments):
    return [{'id': n, 'date_time': m, 'level': None, 'url': None} for n, m in enumerate(moments, start=1)]


def test_unlimited_student_is_never_blocked():
    classes = _classes(*(utc(2024, 1, d, 10) for d in range(1, 6)))
    report = weekly_quota({'weekly_classes': None}, classes, NOW)
    assert report['state'] == QuotaState.UNLIMITED.value
    assert report['attended_this_week'] == 5
    assert not is_blocked(report)


def test_reaching_the_cap():
    classes = _classes(utc(2024, 1, 1, 10), utc(2024, 1, 3, 18))
    report = weekly_quota({'weekly_classes': 2}, classes, NOW)
    assert report['state'] == QuotaState.AT_LIMIT.value
    assert report['limit'] == 2
    assert [c['class_id'] for c in report['classes']] == [1, 2]
    assert is_blocked(report)


def test_below_the_cap_and_other_weeks_do_not_count():
    classes = _classes(utc(2024, 1, 2, 10), utc(2023, 12, 29, 10), utc(2024, 1, 9, 10), None)
    report = weekly_quota({'weekly_classes': 2}, classes, NOW)
    assert report['attended_this_week'] == 1
    assert report['state'] == QuotaState.WITHIN.value


def test_zero_cap_blocks_immediately():
    assert weekly_quota({'weekly_classes': 0}, [], NOW)['state'] == QuotaState.AT_LIMIT.value


def test_sunday_classes_fall_outside_the_quota_week():
    classes = _classes(utc(2024, 1, 7, 9))
    report = weekly_quota({'weekly_classes': 1}, classes, utc(2024, 1, 7, 20))
    assert report['attended_this_week'] == 0
    assert report['week_start'] == utc(2024, 1, 1)
