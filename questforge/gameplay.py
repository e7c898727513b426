"""Quest and task completion rules.

These functions compute the new player and quest state for a user action
without touching storage; the caller persists the returned records.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, UTC
from typing import Iterable

from questforge import config
from questforge.leveling import calculate_level_info, get_adjusted_exp
from questforge.models import Player, Quest
from questforge.recurrence import is_quest_active_on_day, task_is_done

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class XpChangeResult:
    player: Player
    xp_change: int
    old_level: int
    new_level: int
    # Damage and hits the caller must take back from the boss fight
    damage_to_reverse: int = 0
    hits_to_reverse: int = 0

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level


@dataclass(frozen=True)
class ToggleOutcome:
    quest: Quest
    player: Player
    completed: bool
    xp: XpChangeResult
    hp_change: int = 0


def apply_xp_change(player: Player, category: str, xp_change: int, hit_count: int = 1) -> XpChangeResult:
    """Apply an XP gain or reversal to a player's stats.

    Gains are reduced by the low-HP penalty and queued as pending boss
    damage. Reversals are applied as-is; the damage they take back is
    reported so the caller can settle it with the boss fight.

    Args:
        player: The player before the change
        category: Stat category receiving the XP
        xp_change: Positive for a gain, negative for a reversal
        hit_count: Boss hits queued (or reversed) with the change

    Returns:
        XpChangeResult with the updated player and level transition
    """
    adjusted = get_adjusted_exp(xp_change, player.hp) if xp_change > 0 else xp_change
    old_level = calculate_level_info(player.stats.total).level

    if adjusted == 0:
        return XpChangeResult(player=player, xp_change=0, old_level=old_level, new_level=old_level)

    stats = player.stats.with_change(category, adjusted)
    new_level = calculate_level_info(stats.total).level

    if adjusted > 0:
        updated = replace(
            player,
            stats=stats,
            pending_boss_damage=player.pending_boss_damage + adjusted,
            pending_hit_count=player.pending_hit_count + hit_count,
        )
        result = XpChangeResult(updated, adjusted, old_level, new_level)
    else:
        updated = replace(player, stats=stats)
        result = XpChangeResult(
            updated,
            adjusted,
            old_level,
            new_level,
            damage_to_reverse=abs(adjusted),
            hits_to_reverse=hit_count,
        )

    if result.leveled_up:
        logger.info(f"Player {player.name} reached level {new_level}")
    return result


def _restore_hp(player: Player, amount: int) -> tuple[Player, int]:
    new_hp = min(player.max_hp, player.hp + amount)
    return replace(player, hp=new_hp), new_hp - player.hp


def toggle_quest(player: Player, quest: Quest, completed: bool, now: datetime | None = None) -> ToggleOutcome:
    """Mark a quest complete or incomplete.

    Completing awards the quest's bonus XP and restores HP. Un-completing
    takes the XP back without an HP penalty.
    """
    if now is None:
        now = datetime.now(UTC)

    if completed == quest.completed:
        level = calculate_level_info(player.stats.total).level
        return ToggleOutcome(quest, player, completed, XpChangeResult(player, 0, level, level))

    updated_quest = replace(quest, completed=completed, completed_at=now if completed else None)
    xp_change = quest.exp_value if completed else -quest.exp_value

    # XP is scaled by the HP the player had before this completion healed them
    xp = apply_xp_change(player, quest.exp_category, xp_change)
    updated_player = xp.player
    hp_change = 0

    if completed:
        updated_player, hp_change = _restore_hp(updated_player, config.HP_PER_QUEST_COMPLETED)
        updated_player = replace(updated_player, quests_completed=updated_player.quests_completed + 1)

    return ToggleOutcome(updated_quest, updated_player, completed, replace(xp, player=updated_player), hp_change)


def toggle_task(player: Player, quest: Quest, task_id: str, now: datetime | None = None) -> ToggleOutcome:
    """Flip a task between done and not done for its current period.

    Raises:
        KeyError: If the quest has no task with ``task_id``
    """
    if now is None:
        now = datetime.now(UTC)

    task = quest.get_task(task_id)
    was_done = task_is_done(quest, task, now)

    new_task = replace(task, last_completed=None if was_done else now)
    tasks = [new_task if t.id == task_id else t for t in quest.tasks]
    updated_quest = replace(quest, tasks=tasks)

    xp_change = -task.exp_value if was_done else task.exp_value
    xp = apply_xp_change(player, quest.exp_category, xp_change)
    updated_player = xp.player
    hp_change = 0

    if not was_done:
        updated_player, hp_change = _restore_hp(updated_player, config.HP_PER_TASK_COMPLETED)
        updated_player = replace(updated_player, tasks_completed=updated_player.tasks_completed + 1)

    return ToggleOutcome(updated_quest, updated_player, not was_done, replace(xp, player=updated_player), hp_change)


def delete_quest_refund(player: Player, quest: Quest) -> XpChangeResult:
    """Take back a completed quest's bonus XP when the quest is deleted."""
    if quest.completed and quest.exp_value:
        return apply_xp_change(player, quest.exp_category, -quest.exp_value)
    level = calculate_level_info(player.stats.total).level
    return XpChangeResult(player, 0, level, level)


def count_missed_tasks(quests: Iterable[Quest], day: date | datetime) -> int:
    """Count tasks of quests active on ``day`` that were not done for that day's period."""
    if isinstance(day, datetime):
        reference = day
    else:
        reference = datetime(day.year, day.month, day.day, 12, tzinfo=UTC)

    missed = 0
    for quest in quests:
        if quest.completed or not is_quest_active_on_day(quest, reference):
            continue
        missed += sum(1 for task in quest.tasks if not task_is_done(quest, task, reference))
    return missed


def apply_missed_task_decay(player: Player, quests: Iterable[Quest], day: date | datetime) -> tuple[Player, int]:
    """Apply the end-of-day HP loss for missed tasks.

    Returns:
        Tuple of (updated player, number of missed tasks)
    """
    missed = count_missed_tasks(quests, day)
    if missed == 0:
        return player, 0

    new_hp = max(0, player.hp - missed * config.HP_LOST_PER_MISSED_TASK)
    logger.info(f"Player {player.name} missed {missed} task(s), HP {player.hp} -> {new_hp}")
    return replace(player, hp=new_hp), missed


def settle_daily_decay(player: Player, quests: Iterable[Quest], now: datetime | None = None) -> tuple[Player, int]:
    """Charge missed tasks for the last finished day, at most once per day.

    Only yesterday is checked: tasks keep a single completion stamp, so
    earlier days can no longer be judged reliably.

    Returns:
        Tuple of (updated player, number of missed tasks charged)
    """
    if now is None:
        now = datetime.now(UTC)

    today = now.date()
    if player.last_hp_update is not None and player.last_hp_update.date() >= today:
        return player, 0

    yesterday = datetime.combine(today - timedelta(days=1), time(23, 59, 59), tzinfo=now.tzinfo or UTC)
    missed = 0
    if player.last_hp_update is not None:
        player, missed = apply_missed_task_decay(player, quests, yesterday)
    return replace(player, last_hp_update=now), missed
