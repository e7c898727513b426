"""Domain records for QuestForge.

Quests, tasks, recurrence rules, player stats and the weekly boss. Records
convert to and from the JSON-friendly dicts stored in the spreadsheet
(ISO-8601 timestamps with a trailing ``Z``).
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, UTC
from typing import Union

STAT_CATEGORIES = ("strength", "intelligence", "soul")


def parse_timestamp(value) -> datetime | None:
    """Parse a stored timestamp into a timezone-aware datetime.

    Accepts datetimes (naive ones are taken as UTC), ISO-8601 strings with or
    without a ``Z`` suffix, and empty values (returned as None).
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Recurrence rules
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Once:
    type: str = field(default="once", init=False)


@dataclass(frozen=True)
class Daily:
    type: str = field(default="daily", init=False)


@dataclass(frozen=True)
class BiWeekly:
    type: str = field(default="bi-weekly", init=False)


@dataclass(frozen=True)
class Monthly:
    type: str = field(default="monthly", init=False)


@dataclass(frozen=True)
class DaysOfWeek:
    """Repeat on the given weekdays (0-6, Sunday is 0).

    An empty set means every day.
    """
    days: frozenset = frozenset()
    type: str = field(default="days_of_week", init=False)

    def __post_init__(self):
        days = frozenset(int(d) for d in self.days)
        invalid = sorted(d for d in days if d < 0 or d > 6)
        if invalid:
            raise ValueError(f"Weekday indices must be between 0 and 6, got {invalid}")
        object.__setattr__(self, "days", days)


@dataclass(frozen=True)
class UnknownRecurrence:
    """A stored recurrence tag this version does not recognise.

    Kept as its own variant so callers can treat it as always active and
    same-day completion instead of failing on old or hand-edited data.
    """
    type: str


Recurrence = Union[Once, Daily, BiWeekly, Monthly, DaysOfWeek, UnknownRecurrence]

_SIMPLE_RECURRENCES = {
    "once": Once,
    "daily": Daily,
    "bi-weekly": BiWeekly,
    "monthly": Monthly,
}


def recurrence_from_dict(data: dict | None) -> Recurrence | None:
    if not data:
        return None
    kind = data.get("type")
    if kind in _SIMPLE_RECURRENCES:
        return _SIMPLE_RECURRENCES[kind]()
    if kind == "days_of_week":
        # Stored weekdays outside 0-6 are dropped rather than failing the load
        days = (int(d) for d in data.get("days") or ())
        return DaysOfWeek(frozenset(d for d in days if 0 <= d <= 6))
    return UnknownRecurrence(str(kind))


def recurrence_to_dict(recurrence: Recurrence | None) -> dict | None:
    if recurrence is None:
        return None
    if isinstance(recurrence, DaysOfWeek):
        return {"type": recurrence.type, "days": sorted(recurrence.days)}
    return {"type": recurrence.type}


# ---------------------------------------------------------------------------
# Quests and tasks
# ---------------------------------------------------------------------------

@dataclass
class Task:
    id: str
    text: str
    exp_value: int = 0
    last_completed: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        return cls(
            id=str(data.get("id", "")),
            text=data.get("text", ""),
            exp_value=int(data.get("exp_value") or 0),
            last_completed=parse_timestamp(data.get("lastCompleted")),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "exp_value": self.exp_value,
            "lastCompleted": format_timestamp(self.last_completed),
        }


@dataclass
class Quest:
    id: str
    title: str
    created_at: datetime
    exp_category: str = "strength"
    description: str = ""
    start_date: datetime | None = None
    due_date: datetime | None = None
    completed: bool = False
    completed_at: datetime | None = None
    tasks: list[Task] = field(default_factory=list)
    exp_value: int = 0
    recurrence: Recurrence | None = None

    def __post_init__(self):
        if self.exp_category not in STAT_CATEGORIES:
            raise ValueError(f"Unknown stat category: {self.exp_category}")

    def get_task(self, task_id: str) -> Task:
        for task in self.tasks:
            if task.id == task_id:
                return task
        raise KeyError(f"Task '{task_id}' not found in quest '{self.id}'")

    @classmethod
    def from_dict(cls, data: dict) -> "Quest":
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            description=data.get("description") or "",
            created_at=parse_timestamp(data.get("created_at")) or datetime.now(UTC),
            exp_category=data.get("exp_category") or "strength",
            start_date=parse_timestamp(data.get("start_date")),
            due_date=parse_timestamp(data.get("due_date")),
            completed=bool(data.get("completed", False)),
            completed_at=parse_timestamp(data.get("completed_at")),
            tasks=[Task.from_dict(t) for t in data.get("tasks") or []],
            exp_value=int(data.get("exp_value") or 0),
            recurrence=recurrence_from_dict(data.get("recurrence")),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "created_at": format_timestamp(self.created_at),
            "exp_category": self.exp_category,
            "start_date": format_timestamp(self.start_date),
            "due_date": format_timestamp(self.due_date),
            "completed": self.completed,
            "completed_at": format_timestamp(self.completed_at),
            "tasks": [t.to_dict() for t in self.tasks],
            "exp_value": self.exp_value,
            "recurrence": recurrence_to_dict(self.recurrence),
        }


# ---------------------------------------------------------------------------
# Player state
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Stats:
    strength_exp: int = 0
    intelligence_exp: int = 0
    soul_exp: int = 0

    @property
    def total(self) -> int:
        return self.strength_exp + self.intelligence_exp + self.soul_exp

    def get(self, category: str) -> int:
        return getattr(self, f"{category}_exp")

    def with_change(self, category: str, amount: int) -> "Stats":
        """Return new stats with one category changed, never below zero."""
        if category not in STAT_CATEGORIES:
            raise ValueError(f"Unknown stat category: {category}")
        new_value = max(0, self.get(category) + amount)
        return replace(self, **{f"{category}_exp": new_value})


@dataclass(frozen=True)
class Player:
    name: str
    pin_hash: str = ""
    stats: Stats = Stats()
    hp: int = 100
    max_hp: int = 100
    energy: int = 25
    last_energy_refill: datetime | None = None
    pending_boss_damage: int = 0
    pending_hit_count: int = 0
    quests_completed: int = 0
    tasks_completed: int = 0
    credits: int = 0
    achievements: tuple = ()
    last_hp_update: datetime | None = None
    timestamp: str = ""


# ---------------------------------------------------------------------------
# Weekly boss
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WeeklyBoss:
    week_id: str
    title: str
    description: str
    total_hp: int
    current_hp: int
    appearance_date: datetime
    disappearance_date: datetime
    is_defeated: bool = False
    taunts: tuple = ()
    flavor_quest: dict = field(default_factory=dict)


@dataclass(frozen=True)
class BossContribution:
    week_id: str
    player_name: str
    damage_dealt: int = 0
    rewards_claimed: bool = False
    completed_flavor_tasks: tuple = ()
