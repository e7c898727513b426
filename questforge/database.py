"""
Database layer for QuestForge.

Handles Google Sheets operations with retry logic for rate limits. Each
record type lives in its own worksheet; every function takes the gspread
worksheet object it operates on.
"""

import json
import logging
import time
from dataclasses import replace
from datetime import datetime, UTC
from typing import Callable, Any

from gspread.utils import rowcol_to_a1

from questforge import config
from questforge.boss import apply_damage
from questforge.models import (
    BossContribution,
    Player,
    Quest,
    Stats,
    WeeklyBoss,
    format_timestamp,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


class RateLimitError(Exception):
    """Raised when Google Sheets API returns a rate limit error."""
    pass


class PersistenceError(Exception):
    """Raised when Google Sheets operations fail."""
    pass


PLAYER_COLUMNS = [
    "Player_Name",
    "PIN_Hash",
    "Strength_XP",
    "Intelligence_XP",
    "Soul_XP",
    "HP",
    "Max_HP",
    "Energy",
    "Last_Energy_Refill",
    "Pending_Boss_Damage",
    "Pending_Hit_Count",
    "Quests_Completed",
    "Tasks_Completed",
    "Credits",
    "Achievements",
    "Last_HP_Update",
    "Timestamp",
]

QUEST_COLUMNS = ["Quest_ID", "Player_Name", "Quest_JSON", "Timestamp"]

BOSS_COLUMNS = [
    "Week_ID",
    "Title",
    "Description",
    "Total_HP",
    "Current_HP",
    "Appearance_Date",
    "Disappearance_Date",
    "Is_Defeated",
    "Taunts",
    "Flavor_Quest",
]

CONTRIBUTION_COLUMNS = [
    "Week_ID",
    "Player_Name",
    "Damage_Dealt",
    "Rewards_Claimed",
    "Completed_Flavor_Tasks",
]


def retry_with_backoff(func: Callable, max_attempts: int = 3) -> Any:
    """
    Retry a function with exponential backoff for rate limit errors.

    Implements exponential backoff: 1s, 2s, 4s between attempts.

    Args:
        func: The function to retry (should be a callable with no arguments)
        max_attempts: Maximum number of retry attempts (default: 3)

    Returns:
        The return value of the successful function call

    Raises:
        RateLimitError: If all retry attempts fail with rate limit errors
        PersistenceError: If the function fails with a non-rate-limit error
    """
    for attempt in range(max_attempts):
        try:
            return func()
        except PersistenceError:
            raise
        except Exception as e:
            error_msg = str(e).lower()
            is_rate_limit = ('rate limit' in error_msg or
                             'quota' in error_msg or
                             '429' in error_msg)

            if is_rate_limit:
                if attempt == max_attempts - 1:
                    raise RateLimitError(f"Rate limit exceeded after {max_attempts} attempts") from e

                wait_time = 2 ** attempt
                logger.warning(f"Sheets rate limit hit, retrying in {wait_time}s")
                time.sleep(wait_time)
            else:
                raise PersistenceError(f"Database operation failed: {e}") from e

    raise RateLimitError(f"Rate limit exceeded after {max_attempts} attempts")


def ensure_headers(sheets_client, columns: list[str]) -> None:
    """Write the header row to an empty worksheet.

    Raises:
        PersistenceError: If the worksheet has a different header row
        RateLimitError: If rate limit is exceeded after retries
    """
    def _ensure_headers():
        header = sheets_client.row_values(1)
        if not header:
            sheets_client.append_row(columns)
        elif header != columns:
            raise PersistenceError(f"Unexpected worksheet header: {header}")

    retry_with_backoff(_ensure_headers)


def _now_timestamp() -> str:
    return datetime.now(UTC).isoformat().replace('+00:00', 'Z')


def _to_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().upper() == "TRUE"
    return bool(value)


def _to_int(value, default: int = 0) -> int:
    if value is None or value == "":
        return default
    return int(value)


def _find_row(records: list[dict], **match) -> int | None:
    """Return the sheet row number of the first record matching all fields.

    Row numbers account for the header row and 1-indexing.
    """
    for idx, record in enumerate(records):
        # Sheets numericise cells, so a name like "1234" comes back as an int
        if all(str(record.get(key)) == str(value) for key, value in match.items()):
            return idx + 2
    return None


def _write_row(sheets_client, row_num: int, values: list) -> None:
    # Overwrite the whole row in one request, e.g. A5:Q5
    last_cell = rowcol_to_a1(row_num, len(values))
    sheets_client.update(range_name=f"A{row_num}:{last_cell}", values=[values])


# ---------------------------------------------------------------------------
# Players
# ---------------------------------------------------------------------------

def _player_from_record(record: dict) -> Player:
    achievements = str(record.get('Achievements') or '')
    return Player(
        name=str(record.get('Player_Name')),
        pin_hash=record.get('PIN_Hash', ''),
        stats=Stats(
            strength_exp=_to_int(record.get('Strength_XP')),
            intelligence_exp=_to_int(record.get('Intelligence_XP')),
            soul_exp=_to_int(record.get('Soul_XP')),
        ),
        hp=_to_int(record.get('HP'), config.MAX_HP),
        max_hp=_to_int(record.get('Max_HP'), config.MAX_HP),
        energy=_to_int(record.get('Energy'), config.MAX_ENERGY),
        last_energy_refill=parse_timestamp(record.get('Last_Energy_Refill')),
        pending_boss_damage=_to_int(record.get('Pending_Boss_Damage')),
        pending_hit_count=_to_int(record.get('Pending_Hit_Count')),
        quests_completed=_to_int(record.get('Quests_Completed')),
        tasks_completed=_to_int(record.get('Tasks_Completed')),
        credits=_to_int(record.get('Credits')),
        achievements=tuple(a for a in achievements.split(',') if a),
        last_hp_update=parse_timestamp(record.get('Last_HP_Update')),
        timestamp=record.get('Timestamp', ''),
    )


def _player_to_row(player: Player) -> list:
    return [
        player.name,
        player.pin_hash,
        player.stats.strength_exp,
        player.stats.intelligence_exp,
        player.stats.soul_exp,
        player.hp,
        player.max_hp,
        player.energy,
        format_timestamp(player.last_energy_refill) or '',  # Last_Energy_Refill
        player.pending_boss_damage,
        player.pending_hit_count,
        player.quests_completed,
        player.tasks_completed,
        player.credits,
        ','.join(player.achievements),  # Achievements (comma-separated ids)
        format_timestamp(player.last_hp_update) or '',  # Last_HP_Update
        player.timestamp,  # Timestamp
    ]


def get_player(player_name: str, sheets_client) -> Player | None:
    """
    Fetch a player's record from the players worksheet.

    Only the row whose Player_Name exactly matches is returned.

    Args:
        player_name: The player's unique name
        sheets_client: Players worksheet (gspread worksheet object)

    Returns:
        Player if found, None if the player doesn't exist

    Raises:
        PersistenceError: If database operation fails
        RateLimitError: If rate limit is exceeded after retries
    """
    def _get_player():
        # Get all records and search for the player
        records = sheets_client.get_all_records()
        for record in records:
            if str(record.get('Player_Name')) == player_name:
                return _player_from_record(record)
        return None

    return retry_with_backoff(_get_player)


def create_player(player_name: str, pin_hash: str, sheets_client) -> Player:
    """
    Create a new player with full HP and energy.

    Args:
        player_name: The player's unique name
        pin_hash: The bcrypt hashed PIN
        sheets_client: Players worksheet (gspread worksheet object)

    Returns:
        The newly created Player

    Raises:
        PersistenceError: If database operation fails
        RateLimitError: If rate limit is exceeded after retries
    """
    def _create_player():
        now = datetime.now(UTC)
        player = Player(
            name=player_name,
            pin_hash=pin_hash,
            hp=config.MAX_HP,
            max_hp=config.MAX_HP,
            energy=config.MAX_ENERGY,
            last_energy_refill=now,
            credits=config.STARTING_CREDITS,
            last_hp_update=now,
            timestamp=now.isoformat().replace('+00:00', 'Z'),
        )
        # Append row to sheet
        sheets_client.append_row(_player_to_row(player))
        logger.info(f"Created player {player_name}")
        return player

    return retry_with_backoff(_create_player)


def save_player(player: Player, sheets_client) -> bool:
    """
    Write a player's full record back to their row.

    Args:
        player: The player record to store
        sheets_client: Players worksheet (gspread worksheet object)

    Returns:
        True on success, False on failure
    """
    def _save_player():
        # Find the player's row (+2 for header row and 1-indexing)
        records = sheets_client.get_all_records()
        row_num = _find_row(records, Player_Name=player.name)
        if row_num is None:
            raise PersistenceError(f"Player '{player.name}' not found")

        # Refresh the Timestamp column on every write
        stamped = _player_to_row(player)
        stamped[-1] = _now_timestamp()
        _write_row(sheets_client, row_num, stamped)
        return True

    try:
        return retry_with_backoff(_save_player)
    except (PersistenceError, RateLimitError) as e:
        logger.error(f"Failed to save player {player.name}: {e}")
        return False


def update_player_pin(player_name: str, new_pin_hash: str, sheets_client) -> bool:
    """
    Update a player's PIN_Hash for admin PIN recovery.

    ADMIN USE ONLY: not exposed through the UI.

    Args:
        player_name: The player's unique name
        new_pin_hash: The new bcrypt hashed PIN
        sheets_client: Players worksheet (gspread worksheet object)

    Returns:
        True if PIN was updated successfully, False if player not found

    Raises:
        PersistenceError: If database operation fails
        RateLimitError: If rate limit is exceeded after retries
    """
    def _update_pin():
        # Get all records to find the player's row
        records = sheets_client.get_all_records()
        row_num = _find_row(records, Player_Name=player_name)
        if row_num is None:
            return False

        # PIN_Hash is column B
        sheets_client.update_cell(row_num, 2, new_pin_hash)
        return True

    return retry_with_backoff(_update_pin)


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------

def get_player_quests(player_name: str, sheets_client) -> list[Quest]:
    """
    Fetch all quests owned by a player, newest first.

    Rows that cannot be read back as a quest are logged and skipped, so one
    bad row never hides the rest of the player's quests.

    Raises:
        PersistenceError: If database operation fails
        RateLimitError: If rate limit is exceeded after retries
    """
    def _get_quests():
        quests = []
        for record in sheets_client.get_all_records():
            # Only this player's quests
            if str(record.get('Player_Name')) != player_name:
                continue
            try:
                quests.append(Quest.from_dict(json.loads(record.get('Quest_JSON') or '{}')))
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Skipping corrupt quest row {record.get('Quest_ID')}: {e}")
        quests.sort(key=lambda q: q.created_at, reverse=True)
        return quests

    return retry_with_backoff(_get_quests)


def add_quest(player_name: str, quest: Quest, sheets_client) -> Quest:
    """
    Append a new quest row for a player.

    Raises:
        PersistenceError: If database operation fails
        RateLimitError: If rate limit is exceeded after retries
    """
    def _add_quest():
        # Append row to sheet, quest body stored as JSON
        sheets_client.append_row([
            quest.id,
            player_name,
            json.dumps(quest.to_dict()),
            _now_timestamp(),
        ])
        return quest

    return retry_with_backoff(_add_quest)


def save_quest(player_name: str, quest: Quest, sheets_client) -> bool:
    """
    Overwrite a player's quest row with the given quest.

    Returns:
        True on success, False on failure
    """
    def _save_quest():
        records = sheets_client.get_all_records()
        row_num = _find_row(records, Quest_ID=quest.id, Player_Name=player_name)
        if row_num is None:
            raise PersistenceError(f"Quest '{quest.id}' not found for player '{player_name}'")

        _write_row(sheets_client, row_num, [
            quest.id,
            player_name,
            json.dumps(quest.to_dict()),
            _now_timestamp(),
        ])
        return True

    try:
        return retry_with_backoff(_save_quest)
    except (PersistenceError, RateLimitError) as e:
        logger.error(f"Failed to save quest {quest.id}: {e}")
        return False


def delete_quest(player_name: str, quest_id: str, sheets_client) -> bool:
    """
    Delete a player's quest row.

    Returns:
        True if a row was deleted, False if the quest was not found

    Raises:
        PersistenceError: If database operation fails
        RateLimitError: If rate limit is exceeded after retries
    """
    def _delete_quest():
        records = sheets_client.get_all_records()
        row_num = _find_row(records, Quest_ID=quest_id, Player_Name=player_name)
        if row_num is None:
            return False

        # Delete the row (row number already includes the header offset)
        sheets_client.delete_rows(row_num)
        return True

    return retry_with_backoff(_delete_quest)


# ---------------------------------------------------------------------------
# Weekly bosses
# ---------------------------------------------------------------------------

def _boss_from_record(record: dict) -> WeeklyBoss:
    return WeeklyBoss(
        week_id=str(record.get('Week_ID')),
        title=record.get('Title', ''),
        description=record.get('Description', ''),
        total_hp=_to_int(record.get('Total_HP')),
        current_hp=_to_int(record.get('Current_HP')),
        appearance_date=parse_timestamp(record.get('Appearance_Date')),
        disappearance_date=parse_timestamp(record.get('Disappearance_Date')),
        is_defeated=_to_bool(record.get('Is_Defeated')),
        taunts=tuple(json.loads(record.get('Taunts') or '[]')),
        flavor_quest=json.loads(record.get('Flavor_Quest') or '{}'),
    )


def _boss_to_row(boss: WeeklyBoss) -> list:
    return [
        boss.week_id,
        boss.title,
        boss.description,
        boss.total_hp,
        boss.current_hp,
        format_timestamp(boss.appearance_date),
        format_timestamp(boss.disappearance_date),
        boss.is_defeated,
        json.dumps(list(boss.taunts)),
        json.dumps(boss.flavor_quest),
    ]


def get_weekly_boss(week_id: str, sheets_client) -> WeeklyBoss | None:
    """
    Fetch the boss for a week.

    Returns:
        WeeklyBoss if one was generated for the week, None otherwise

    Raises:
        PersistenceError: If database operation fails
        RateLimitError: If rate limit is exceeded after retries
    """
    def _get_boss():
        for record in sheets_client.get_all_records():
            if str(record.get('Week_ID')) == week_id:
                return _boss_from_record(record)
        return None

    return retry_with_backoff(_get_boss)


def save_weekly_boss(boss: WeeklyBoss, sheets_client) -> bool:
    """
    Insert or overwrite the boss row for its week.

    Raises:
        PersistenceError: If database operation fails
        RateLimitError: If rate limit is exceeded after retries
    """
    def _save_boss():
        records = sheets_client.get_all_records()
        row_num = _find_row(records, Week_ID=boss.week_id)

        if row_num is None:
            sheets_client.append_row(_boss_to_row(boss))
        else:
            _write_row(sheets_client, row_num, _boss_to_row(boss))
        return True

    return retry_with_backoff(_save_boss)


def apply_boss_damage(week_id: str, damage: int, sheets_client) -> WeeklyBoss | None:
    """
    Apply damage to the week's boss as it is stored right now.

    The row is re-read before writing so hits from other players landing in
    between are kept. Negative damage heals the boss, up to its total HP.

    Args:
        week_id: Week of the boss
        damage: HP to subtract (negative to heal)
        sheets_client: Bosses worksheet (gspread worksheet object)

    Returns:
        The updated WeeklyBoss, or None if the week has no boss

    Raises:
        PersistenceError: If database operation fails
        RateLimitError: If rate limit is exceeded after retries
    """
    def _apply_damage():
        # Find the boss's current row (+2 for header row and 1-indexing)
        records = sheets_client.get_all_records()
        row_num = _find_row(records, Week_ID=week_id)
        if row_num is None:
            return None

        boss = apply_damage(_boss_from_record(records[row_num - 2]), damage)
        _write_row(sheets_client, row_num, _boss_to_row(boss))
        return boss

    return retry_with_backoff(_apply_damage)


# ---------------------------------------------------------------------------
# Boss contributions
# ---------------------------------------------------------------------------

def _contribution_from_record(record: dict) -> BossContribution:
    return BossContribution(
        week_id=str(record.get('Week_ID')),
        player_name=str(record.get('Player_Name')),
        damage_dealt=_to_int(record.get('Damage_Dealt')),
        rewards_claimed=_to_bool(record.get('Rewards_Claimed')),
        completed_flavor_tasks=tuple(json.loads(record.get('Completed_Flavor_Tasks') or '[]')),
    )


def _contribution_to_row(contribution: BossContribution) -> list:
    return [
        contribution.week_id,
        contribution.player_name,
        contribution.damage_dealt,
        contribution.rewards_claimed,
        json.dumps(list(contribution.completed_flavor_tasks)),
    ]


def get_contribution(week_id: str, player_name: str, sheets_client) -> BossContribution:
    """
    Fetch a player's contribution to a week's boss.

    Returns an empty contribution when the player has not fought this week.

    Raises:
        PersistenceError: If database operation fails
        RateLimitError: If rate limit is exceeded after retries
    """
    def _get_contribution():
        for record in sheets_client.get_all_records():
            if str(record.get('Week_ID')) == week_id and str(record.get('Player_Name')) == player_name:
                return _contribution_from_record(record)
        return BossContribution(week_id=week_id, player_name=player_name)

    return retry_with_backoff(_get_contribution)


def get_week_contributions(week_id: str, sheets_client) -> list[BossContribution]:
    """
    Fetch every player's contribution to a week's boss.

    Raises:
        PersistenceError: If database operation fails
        RateLimitError: If rate limit is exceeded after retries
    """
    def _get_contributions():
        return [
            _contribution_from_record(record)
            for record in sheets_client.get_all_records()
            if str(record.get('Week_ID')) == week_id
        ]

    return retry_with_backoff(_get_contributions)


def save_contribution(contribution: BossContribution, sheets_client) -> bool:
    """
    Insert or overwrite a player's contribution row.

    Raises:
        PersistenceError: If database operation fails
        RateLimitError: If rate limit is exceeded after retries
    """
    def _save_contribution():
        records = sheets_client.get_all_records()
        row_num = _find_row(records, Week_ID=contribution.week_id, Player_Name=contribution.player_name)

        # Append a new row the first time a player fights this boss
        if row_num is None:
            sheets_client.append_row(_contribution_to_row(contribution))
        else:
            _write_row(sheets_client, row_num, _contribution_to_row(contribution))
        return True

    return retry_with_backoff(_save_contribution)


def add_contribution_damage(
    week_id: str,
    player_name: str,
    damage: int,
    sheets_client,
) -> tuple[BossContribution, int]:
    """
    Add damage to a player's stored contribution, never going below zero.

    Like apply_boss_damage, the row is re-read before writing.

    Args:
        week_id: Week of the boss
        player_name: The contributing player
        damage: Damage to add (negative to take back)
        sheets_client: Contributions worksheet (gspread worksheet object)

    Returns:
        Tuple of (updated contribution, damage actually applied)

    Raises:
        PersistenceError: If database operation fails
        RateLimitError: If rate limit is exceeded after retries
    """
    def _add_damage():
        records = sheets_client.get_all_records()
        row_num = _find_row(records, Week_ID=week_id, Player_Name=player_name)
        if row_num is None:
            contribution = BossContribution(week_id=week_id, player_name=player_name)
        else:
            contribution = _contribution_from_record(records[row_num - 2])

        new_damage = max(0, contribution.damage_dealt + damage)
        applied = new_damage - contribution.damage_dealt
        if applied == 0:
            return contribution, 0

        updated = replace(contribution, damage_dealt=new_damage)
        if row_num is None:
            sheets_client.append_row(_contribution_to_row(updated))
        else:
            _write_row(sheets_client, row_num, _contribution_to_row(updated))
        return updated, applied

    return retry_with_backoff(_add_damage)


# ---------------------------------------------------------------------------
# Multi-worksheet commits
# ---------------------------------------------------------------------------

def _land_damage(player_name: str, week_id: str, damage: int, worksheets: dict) -> None:
    """Record landed (or reversed) damage on the contribution, then the boss.

    The boss moves by what the contribution actually absorbed, so a reversal
    never heals more than the player dealt this week. Failures are logged:
    the player's record has already been committed at this point.
    """
    try:
        _, applied = add_contribution_damage(
            week_id, player_name, damage, worksheets[config.CONTRIBUTIONS_WORKSHEET]
        )
        if applied:
            apply_boss_damage(week_id, applied, worksheets[config.BOSSES_WORKSHEET])
    except (PersistenceError, RateLimitError) as e:
        logger.error(f"Failed to record {damage} boss damage for {player_name} in week {week_id}: {e}")


def commit_attack(player: Player, week_id: str, damage: int, worksheets: dict) -> None:
    """
    Persist an attack: the player's cleared pending damage first, then the hit.

    Saving the player first means a failed write can never let the same
    pending damage land twice.

    Args:
        player: The player after the attack (pending damage cleared)
        week_id: Week of the boss that was attacked
        damage: Damage dealt by the attack
        worksheets: Dict mapping worksheet name to gspread worksheet object

    Raises:
        PersistenceError: If the player record cannot be saved
    """
    if not save_player(player, worksheets[config.PLAYERS_WORKSHEET]):
        raise PersistenceError(f"Failed to save player {player.name}")
    if damage > 0:
        _land_damage(player.name, week_id, damage, worksheets)


def commit_progress(
    player: Player,
    quest: Quest | None,
    week_id: str,
    landed_to_reverse: int,
    worksheets: dict,
) -> None:
    """
    Persist a quest and player change, then take back reversed boss damage.

    Args:
        player: The updated player
        quest: The updated quest, or None when the quest was deleted
        week_id: Current week
        landed_to_reverse: Reversed damage that had already hit the boss
        worksheets: Dict mapping worksheet name to gspread worksheet object

    Raises:
        PersistenceError: If the quest or player record cannot be saved
    """
    if quest is not None and not save_quest(player.name, quest, worksheets[config.QUESTS_WORKSHEET]):
        raise PersistenceError(f"Failed to save quest {quest.id}")
    if not save_player(player, worksheets[config.PLAYERS_WORKSHEET]):
        raise PersistenceError(f"Failed to save player {player.name}")
    if landed_to_reverse > 0:
        _land_damage(player.name, week_id, -landed_to_reverse, worksheets)
