"""Recurrence rules for quests and tasks.

Decides whether a quest is active on a given calendar day and whether a task
counts as done for the current period of its quest's recurrence. All checks
work on calendar days; the time of day is ignored.
"""

import calendar
from datetime import date, datetime, time, timedelta, UTC
from typing import Iterable

from questforge import config
from questforge.models import (
    BiWeekly,
    DaysOfWeek,
    Monthly,
    Once,
    Quest,
    Recurrence,
    Task,
)

# Bi-weekly completion buckets count weeks from this day unless anchored
EPOCH = date(1970, 1, 1)


def _to_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _week_start(day: date) -> date:
    """Monday of the week containing ``day``."""
    return day - timedelta(days=day.weekday())


def calendar_weeks_between(later: date | datetime, earlier: date | datetime) -> int:
    """Number of Monday-start week boundaries between two days.

    Negative when ``later`` is actually before ``earlier``.
    """
    delta = _week_start(_to_date(later)) - _week_start(_to_date(earlier))
    return delta.days // 7


def sunday_weekday_index(day: date | datetime) -> int:
    """Weekday index with Sunday as 0 and Saturday as 6."""
    return (_to_date(day).weekday() + 1) % 7


def is_quest_active_on_day(quest: Quest, day: date | datetime) -> bool:
    """Check if a quest is active on a given day.

    Args:
        quest: The quest to check
        day: The calendar day (a time of day is ignored)

    Returns:
        True if the quest falls inside its start/due window and its
        recurrence schedules it for ``day``
    """
    check_day = _to_date(day)
    start_day = _to_date(quest.start_date or quest.created_at)

    if check_day < start_day:
        return False

    if quest.due_date is not None and check_day > _to_date(quest.due_date):
        return False

    recurrence = quest.recurrence
    if recurrence is None:
        return True

    if isinstance(recurrence, BiWeekly):
        return calendar_weeks_between(check_day, start_day) % 2 == 0

    if isinstance(recurrence, Monthly):
        days_in_month = calendar.monthrange(check_day.year, check_day.month)[1]
        if start_day.day > days_in_month:
            return check_day.day == days_in_month
        return check_day.day == start_day.day

    if isinstance(recurrence, DaysOfWeek):
        if not recurrence.days:
            return True
        return sunday_weekday_index(check_day) in recurrence.days

    # Once, Daily and unrecognised tags are active every day of the window
    return True


def _biweekly_bucket(day: date, anchor: date) -> int:
    return calendar_weeks_between(day, anchor) // 2


def is_completed_for_period(
    last_completed: datetime | None,
    recurrence: Recurrence | None,
    reference: datetime | None = None,
    anchor: date | datetime | None = None,
) -> bool:
    """Check if a task completion still counts for the current period.

    Args:
        last_completed: When the task was last completed (None if never)
        recurrence: The parent quest's recurrence rule
        reference: The moment to check against (default: now)
        anchor: Day that bi-weekly periods are counted from. Defaults to the
            global epoch, giving every quest the same two-week cadence.

    Returns:
        True if the task is done for the period containing ``reference``
    """
    if last_completed is None:
        return False

    if isinstance(recurrence, Once):
        return True

    if reference is None:
        reference = datetime.now(UTC)

    completed_day = _to_date(last_completed)
    reference_day = _to_date(reference)

    if isinstance(recurrence, BiWeekly):
        anchor_day = _to_date(anchor) if anchor is not None else EPOCH
        return _biweekly_bucket(reference_day, anchor_day) == _biweekly_bucket(completed_day, anchor_day)

    if isinstance(recurrence, Monthly):
        return (completed_day.year, completed_day.month) == (reference_day.year, reference_day.month)

    # Daily, DaysOfWeek, unrecognised tags and no rule reset every day
    return completed_day == reference_day


def completion_anchor(quest: Quest) -> date | None:
    """Anchor for bi-weekly completion periods under the configured policy."""
    if config.BIWEEKLY_COMPLETION_ANCHOR == "quest_start":
        return _to_date(quest.start_date or quest.created_at)
    return None


def task_is_done(quest: Quest, task: Task, reference: datetime | None = None) -> bool:
    return is_completed_for_period(
        task.last_completed,
        quest.recurrence,
        reference,
        anchor=completion_anchor(quest),
    )


def completion_reference(day: date, now: datetime) -> datetime:
    """Moment a board for ``day`` judges task completion at.

    Today uses the current time; any other day uses its noon.
    """
    if day == now.date():
        return now
    return datetime.combine(day, time(12), tzinfo=now.tzinfo or UTC)


def active_quests(quests: Iterable[Quest], day: date | datetime) -> list[Quest]:
    return [quest for quest in quests if is_quest_active_on_day(quest, day)]
