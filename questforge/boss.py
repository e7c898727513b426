"""Weekly boss fight rules.

Players build up pending damage by earning XP and spend energy to land it on
the shared boss. Boss HP never drops below zero; reaching zero defeats it.
"""

import logging
from dataclasses import replace
from datetime import date, datetime, time, timedelta, UTC
from typing import Iterable, NamedTuple

from questforge import config
from questforge.models import BossContribution, Player, WeeklyBoss
from questforge.regen import compute_regenerated_amount

logger = logging.getLogger(__name__)


class BossError(Exception):
    """Raised when a boss action is not allowed in the current state."""
    pass


class NotEnoughEnergyError(BossError):
    """Raised when a player lacks the energy to land their pending hits."""
    pass


class AttackResult(NamedTuple):
    player: Player
    boss: WeeklyBoss
    contribution: BossContribution
    dealt_damage: int
    hit_count: int


class LeaderboardEntry(NamedTuple):
    rank: int
    player_name: str
    damage_dealt: int


def get_week_id(day: date | datetime) -> str:
    """Build the ``YYYY-WW`` id of the week containing ``day``.

    Uses ISO weeks: they start on Monday and every day of a week shares one
    id, including weeks that span New Year.
    """
    if isinstance(day, datetime):
        day = day.date()
    iso = day.isocalendar()
    return f"{iso.year}-{iso.week:02d}"


def week_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Start of Monday and end of Sunday for the week containing ``now``."""
    monday = now.date() - timedelta(days=now.weekday())
    tz = now.tzinfo or UTC
    start = datetime.combine(monday, time.min, tzinfo=tz)
    end = datetime.combine(monday + timedelta(days=6), time.max, tzinfo=tz)
    return start, end


def new_weekly_boss(
    title: str,
    description: str,
    total_hp: int,
    now: datetime | None = None,
    taunts: Iterable[str] = (),
    flavor_quest: dict | None = None,
    deadline: datetime | None = None,
) -> WeeklyBoss:
    """Create the boss for the week containing ``now`` at full HP."""
    if now is None:
        now = datetime.now(UTC)
    appearance, end_of_week = week_bounds(now)
    return WeeklyBoss(
        week_id=get_week_id(now),
        title=title,
        description=description,
        total_hp=total_hp,
        current_hp=total_hp,
        appearance_date=appearance,
        disappearance_date=deadline or end_of_week,
        is_defeated=False,
        taunts=tuple(taunts),
        flavor_quest=flavor_quest or {},
    )


def community_boss_hp(previous_week_damage: int) -> int:
    """Size a new boss from the damage the community dealt last week."""
    scaled = previous_week_damage * config.BOSS_HP_GROWTH_PERCENT // 100
    return min(config.BOSS_MAX_HP, max(config.BOSS_MIN_HP, scaled))


DEFAULT_BOSSES = [
    {
        "title": "The Procrastination Hydra",
        "description": "Every task you put off grows another head. Cut them down together.",
        "taunts": ["Tomorrow is a perfectly good day.", "Just one more episode..."],
    },
    {
        "title": "Lord of Endless Scrolling",
        "description": "It feeds on idle minutes and distracted thumbs.",
        "taunts": ["Refresh. Refresh. Refresh.", "You deserve a break. Another one."],
    },
    {
        "title": "The Fog of Burnout",
        "description": "A grey mist that drains HP from heroes who forget to rest and recover.",
        "taunts": ["Rest is for the weak.", "Skip lunch, nobody will notice."],
    },
]


def default_weekly_boss(now: datetime, previous_week_damage: int) -> WeeklyBoss:
    """Build this week's boss from the built-in roster when none was published."""
    template = DEFAULT_BOSSES[int(get_week_id(now).split("-")[1]) % len(DEFAULT_BOSSES)]
    return new_weekly_boss(
        template["title"],
        template["description"],
        community_boss_hp(previous_week_damage),
        now=now,
        taunts=template["taunts"],
    )


def apply_damage(boss: WeeklyBoss, damage: int) -> WeeklyBoss:
    """Subtract damage from the boss, keeping HP between zero and its total.

    Negative damage heals.
    """
    new_hp = min(boss.total_hp, max(0, boss.current_hp - damage))
    return replace(boss, current_hp=new_hp, is_defeated=new_hp <= 0)


def current_energy(player: Player, now: datetime | None = None) -> int:
    return compute_regenerated_amount(
        player.last_energy_refill,
        player.energy,
        config.MAX_ENERGY,
        config.ENERGY_REGEN_MINUTES,
        now,
    )


def attack_boss(
    player: Player,
    boss: WeeklyBoss,
    contribution: BossContribution,
    now: datetime | None = None,
) -> AttackResult:
    """Land the player's pending damage on the boss.

    Args:
        player: The attacking player
        boss: This week's boss
        contribution: The player's contribution record for this week
        now: Time of the attack (default: now)

    Returns:
        AttackResult with the updated records and the damage dealt

    Raises:
        NotEnoughEnergyError: If regenerated energy cannot cover the pending hits
    """
    if now is None:
        now = datetime.now(UTC)

    if boss.is_defeated:
        cleared = replace(player, pending_boss_damage=0, pending_hit_count=0)
        return AttackResult(cleared, boss, contribution, 0, 0)

    damage = player.pending_boss_damage
    if damage <= 0:
        return AttackResult(player, boss, contribution, 0, 0)

    energy = current_energy(player, now)
    cost = player.pending_hit_count * config.ENERGY_PER_HIT
    if energy < cost:
        raise NotEnoughEnergyError(f"Not enough energy: {energy} available, {cost} needed")

    updated_player = replace(
        player,
        pending_boss_damage=0,
        pending_hit_count=0,
        energy=energy - cost,
        last_energy_refill=now,
    )
    updated_boss = apply_damage(boss, damage)
    updated_contribution = replace(contribution, damage_dealt=contribution.damage_dealt + damage)

    logger.info(f"Player {player.name} dealt {damage} damage to boss {boss.week_id} ({updated_boss.current_hp} HP left)")
    if updated_boss.is_defeated:
        logger.info(f"Boss {boss.week_id} defeated")

    return AttackResult(updated_player, updated_boss, updated_contribution, damage, player.pending_hit_count)


def reverse_pending_damage(player: Player, xp_to_reverse: int, hits_to_reverse: int) -> tuple[Player, int]:
    """Take reversed XP out of the player's pending damage.

    Returns:
        The updated player and the part of the reversal that had already
        landed on the boss
    """
    amount = abs(xp_to_reverse)
    from_pending = min(amount, player.pending_boss_damage)
    hits_from_pending = min(hits_to_reverse, player.pending_hit_count) if from_pending > 0 else 0

    player = replace(
        player,
        pending_boss_damage=player.pending_boss_damage - from_pending,
        pending_hit_count=player.pending_hit_count - hits_from_pending,
    )
    return player, amount - from_pending


def reverse_damage(
    player: Player,
    boss: WeeklyBoss | None,
    contribution: BossContribution | None,
    xp_to_reverse: int,
    hits_to_reverse: int,
) -> tuple[Player, WeeklyBoss | None, BossContribution | None]:
    """Take back damage earned by XP that has been reversed.

    Pending (not yet landed) damage is reduced first; anything left is healed
    back onto the boss and removed from the player's contribution. The heal
    never exceeds what the player dealt to this boss, so damage landed on an
    earlier week's boss is not refunded here.
    """
    player, landed = reverse_pending_damage(player, xp_to_reverse, hits_to_reverse)

    if landed > 0 and boss is not None:
        if contribution is not None:
            landed = min(landed, contribution.damage_dealt)
            contribution = replace(contribution, damage_dealt=contribution.damage_dealt - landed)
        boss = apply_damage(boss, -landed)

    return player, boss, contribution


def complete_flavor_task(
    player: Player,
    contribution: BossContribution,
    task_id: str,
    damage: int,
) -> tuple[Player, BossContribution]:
    """Queue bonus damage for a boss flavor task; repeat completions do nothing."""
    if task_id in contribution.completed_flavor_tasks:
        return player, contribution

    contribution = replace(contribution, completed_flavor_tasks=contribution.completed_flavor_tasks + (task_id,))
    player = replace(
        player,
        pending_boss_damage=player.pending_boss_damage + damage,
        pending_hit_count=player.pending_hit_count + 1,
    )
    return player, contribution


def reward_for_rank(rank: int) -> int:
    """Credits awarded for a leaderboard rank: 100 for first, 10 less per rank."""
    return max(0, 100 - (rank - 1) * 10)


def build_leaderboard(
    contributions: Iterable[BossContribution],
    limit: int = config.LEADERBOARD_SIZE,
) -> list[LeaderboardEntry]:
    ranked = sorted(
        (c for c in contributions if c.damage_dealt > 0),
        key=lambda c: c.damage_dealt,
        reverse=True,
    )
    return [
        LeaderboardEntry(rank=index + 1, player_name=c.player_name, damage_dealt=c.damage_dealt)
        for index, c in enumerate(ranked[:limit])
    ]


def claim_rewards(
    player: Player,
    boss: WeeklyBoss,
    contribution: BossContribution,
    leaderboard: list[LeaderboardEntry],
) -> tuple[Player, BossContribution, int]:
    """Grant leaderboard credits for a defeated boss.

    Raises:
        BossError: If the boss is alive, the reward was claimed, the player
            dealt no damage or did not rank high enough
    """
    entry = next((e for e in leaderboard if e.player_name == player.name), None)
    if entry is None:
        raise BossError("You did not rank in the top 10. No credits awarded.")

    reward = reward_for_rank(entry.rank)
    if reward <= 0:
        raise BossError("Your rank is not high enough for a credit reward.")
    if not boss.is_defeated:
        raise BossError("The boss has not been defeated yet!")
    if contribution.rewards_claimed:
        raise BossError("You have already claimed your reward for this boss.")
    if contribution.damage_dealt <= 0:
        raise BossError("You must deal damage to claim a reward.")

    player = replace(player, credits=player.credits + reward)
    contribution = replace(contribution, rewards_claimed=True)
    logger.info(f"Player {player.name} claimed {reward} credits for boss {boss.week_id}")
    return player, contribution, reward
