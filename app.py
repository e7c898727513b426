"""
QuestForge - Main Streamlit Application

Entry point for the gamified productivity tracker. Orchestrates login,
quest and task completion, the weekly boss fight and UI rendering.
"""

import logging
import uuid
from dataclasses import replace
from datetime import date, datetime, time, timedelta, UTC

import streamlit as st

from questforge import config
from questforge.achievements import newly_unlocked
from questforge.analytics import send_completion_metric
from questforge.auth import authenticate_player
from questforge.boss import (
    BossError,
    NotEnoughEnergyError,
    attack_boss,
    build_leaderboard,
    claim_rewards,
    complete_flavor_task,
    default_weekly_boss,
    get_week_id,
    reverse_pending_damage,
)
from questforge.database import (
    BOSS_COLUMNS,
    CONTRIBUTION_COLUMNS,
    PLAYER_COLUMNS,
    QUEST_COLUMNS,
    PersistenceError,
    RateLimitError,
    add_quest,
    commit_attack,
    commit_progress,
    delete_quest,
    ensure_headers,
    get_contribution,
    get_player_quests,
    get_week_contributions,
    get_weekly_boss,
    save_contribution,
    save_player,
    save_weekly_boss,
)
from questforge.gameplay import (
    delete_quest_refund,
    settle_daily_decay,
    toggle_quest,
    toggle_task,
)
from questforge.models import DaysOfWeek, Quest, Task, recurrence_from_dict
from questforge.recurrence import active_quests
from questforge.ui_components import (
    render_boss,
    render_guide,
    render_new_quest_form,
    render_player_status,
    render_quest_board,
    render_sidebar_auth,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Page configuration
st.set_page_config(
    page_title="QuestForge",
    page_icon="⚔️",
    layout="wide"
)

WORKSHEET_COLUMNS = {
    config.PLAYERS_WORKSHEET: PLAYER_COLUMNS,
    config.QUESTS_WORKSHEET: QUEST_COLUMNS,
    config.BOSSES_WORKSHEET: BOSS_COLUMNS,
    config.CONTRIBUTIONS_WORKSHEET: CONTRIBUTION_COLUMNS,
}


def initialize_session_state():
    """Initialize Streamlit session state with default values.

    Session state fields:
    - authenticated: bool - Whether a player is logged in
    - player: Player | None - The logged-in player's record
    - quests: list[Quest] - The player's quests
    """
    if "authenticated" not in st.session_state:
        st.session_state.authenticated = False
    if "player" not in st.session_state:
        st.session_state.player = None
    if "quests" not in st.session_state:
        st.session_state.quests = []


def get_worksheets() -> dict:
    """Open the game spreadsheet from Streamlit secrets.

    Returns:
        Dict mapping worksheet name to gspread worksheet object

    Raises:
        Exception: If secrets are not configured or connection fails
    """
    try:
        import gspread
        from google.oauth2.service_account import Credentials

        scopes = [
            "https://www.googleapis.com/auth/spreadsheets",
            "https://www.googleapis.com/auth/drive"
        ]
        credentials = Credentials.from_service_account_info(
            st.secrets["gcp_service_account"],
            scopes=scopes
        )
        client = gspread.authorize(credentials)
        spreadsheet = client.open_by_key(st.secrets["google_sheets_id"])

        worksheets = {}
        for name, columns in WORKSHEET_COLUMNS.items():
            worksheets[name] = spreadsheet.worksheet(name)
            ensure_headers(worksheets[name], columns)
        return worksheets

    except Exception as e:
        logger.error(f"Failed to connect to Google Sheets: {e}")
        raise


def get_datadog_api_key() -> str:
    """Load the Datadog API key from Streamlit secrets (empty if not configured)."""
    return st.secrets.get("datadog_api_key", "")


def show_storage_error(e: Exception):
    if isinstance(e, RateLimitError):
        st.error("System is busy. Please wait a moment and try again.")
    else:
        st.error("Unable to connect to database. Please try again.")


def handle_authentication(worksheets):
    """Handle login form submission from the sidebar."""
    if "auth_submission" not in st.session_state:
        return

    auth_data = st.session_state.pop("auth_submission")
    player_name = auth_data.get("player_name", "").strip()
    pin = auth_data.get("pin", "").strip()

    if not player_name or not pin:
        st.sidebar.error("Please enter both name and PIN")
        return

    try:
        player = authenticate_player(player_name, pin, worksheets[config.PLAYERS_WORKSHEET])
        if player is None:
            st.sidebar.error("Invalid name or PIN")
            return

        quests = get_player_quests(player_name, worksheets[config.QUESTS_WORKSHEET])
        player, missed = settle_daily_decay(player, quests)
        save_player(player, worksheets[config.PLAYERS_WORKSHEET])

        st.session_state.authenticated = True
        st.session_state.player = player
        st.session_state.quests = quests
        if missed:
            st.session_state["login_notice"] = f"💔 You missed {missed} task(s) yesterday and lost HP."
        st.rerun()

    except (PersistenceError, RateLimitError) as e:
        logger.error(f"Authentication error: {e}")
        st.sidebar.error("Unable to connect to database. Please try again.")


def _replace_quest(quest: Quest):
    st.session_state.quests = [quest if q.id == quest.id else q for q in st.session_state.quests]


def _find_quest(quest_id: str) -> Quest | None:
    return next((q for q in st.session_state.quests if q.id == quest_id), None)


def _unlock_achievements(player):
    counters = {"quests_completed": player.quests_completed, "tasks_completed": player.tasks_completed}
    unlocked = newly_unlocked(counters, player.achievements)
    for achievement in unlocked:
        st.toast(f"🏆 Achievement unlocked: {achievement['name']}")
    if unlocked:
        player = replace(player, achievements=player.achievements + tuple(a["id"] for a in unlocked))
    return player


def _settle_reversal(player, xp_result):
    """Take reversed XP back out of pending damage.

    Returns the updated player and the reversed damage that had already
    landed on the boss.
    """
    if not xp_result.damage_to_reverse:
        return player, 0
    return reverse_pending_damage(player, xp_result.damage_to_reverse, xp_result.hits_to_reverse)


def handle_progress_toggles(worksheets, datadog_api_key, now: datetime):
    """Handle quest and task checkbox changes.

    Restores session state if persistence fails.
    """
    original_player = st.session_state.player
    original_quests = list(st.session_state.quests)
    week_id = get_week_id(now)

    try:
        if "task_toggle" in st.session_state:
            toggle = st.session_state.pop("task_toggle")
            quest = _find_quest(toggle["quest_id"])
            if quest is None:
                return
            outcome = toggle_task(st.session_state.player, quest, toggle["task_id"], now)
            kind = "task"
        elif "quest_toggle" in st.session_state:
            toggle = st.session_state.pop("quest_toggle")
            quest = _find_quest(toggle["quest_id"])
            if quest is None:
                return
            outcome = toggle_quest(st.session_state.player, quest, toggle["completed"], now)
            kind = "quest"
        else:
            return

        player, landed = _settle_reversal(outcome.player, outcome.xp)
        if outcome.completed:
            player = _unlock_achievements(player)

        commit_progress(player, outcome.quest, week_id, landed, worksheets)
        st.session_state.player = player
        _replace_quest(outcome.quest)

        if outcome.completed:
            send_completion_metric(kind, outcome.quest.exp_category, datadog_api_key)
            st.toast(f"✅ +{outcome.xp.xp_change} XP")
        if outcome.xp.leveled_up:
            st.balloons()
            st.success(f"🎉 Level up! You reached level {outcome.xp.new_level}")
        st.rerun()

    except (PersistenceError, RateLimitError) as e:
        st.session_state.player = original_player
        st.session_state.quests = original_quests
        show_storage_error(e)
        logger.error(f"Progress update failed for {original_player.name}: {e}")


def _build_quest(submission: dict, now: datetime) -> Quest:
    def at_midnight(day: date | None):
        return datetime.combine(day, time.min, tzinfo=UTC) if day else None

    kind = submission["recurrence_type"]
    if kind == "none":
        recurrence = None
    elif kind == "days_of_week":
        recurrence = DaysOfWeek(frozenset(submission["days"]))
    else:
        recurrence = recurrence_from_dict({"type": kind})

    tasks = [
        Task(id=uuid.uuid4().hex[:8], text=text, exp_value=submission["task_xp"])
        for text in submission["tasks"][:config.MAX_TASKS_PER_QUEST]
    ]
    return Quest(
        id=uuid.uuid4().hex,
        title=submission["title"].strip(),
        description=submission["description"].strip(),
        created_at=now,
        exp_category=submission["exp_category"],
        start_date=at_midnight(submission["start_date"]),
        due_date=at_midnight(submission["due_date"]),
        tasks=tasks,
        exp_value=submission["exp_value"],
        recurrence=recurrence,
    )


def handle_new_quest(worksheets, now: datetime):
    if "new_quest_submission" not in st.session_state:
        return

    submission = st.session_state.pop("new_quest_submission")
    if not submission["title"].strip():
        st.error("A quest needs a title.")
        return
    if submission["due_date"] and submission["start_date"] and submission["due_date"] < submission["start_date"]:
        st.error("The due date cannot be before the start date.")
        return

    quest = _build_quest(submission, now)
    try:
        add_quest(st.session_state.player.name, quest, worksheets[config.QUESTS_WORKSHEET])
        st.session_state.quests = [quest] + st.session_state.quests
        st.success(f"Quest added: \"{quest.title}\"")
        st.rerun()
    except (PersistenceError, RateLimitError) as e:
        show_storage_error(e)
        logger.error(f"Failed to add quest: {e}")


def handle_quest_delete(worksheets, now: datetime):
    if "quest_delete" not in st.session_state:
        return

    quest = _find_quest(st.session_state.pop("quest_delete"))
    if quest is None:
        return

    player = st.session_state.player
    try:
        delete_quest(player.name, quest.id, worksheets[config.QUESTS_WORKSHEET])
        refund = delete_quest_refund(player, quest)
        player, landed = _settle_reversal(refund.player, refund)
        commit_progress(player, None, get_week_id(now), landed, worksheets)

        st.session_state.player = player
        st.session_state.quests = [q for q in st.session_state.quests if q.id != quest.id]
        st.rerun()
    except (PersistenceError, RateLimitError) as e:
        show_storage_error(e)
        logger.error(f"Failed to delete quest {quest.id}: {e}")


def load_weekly_boss(worksheets, now: datetime):
    """Fetch this week's boss, publishing a default one if none exists yet."""
    bosses_ws = worksheets[config.BOSSES_WORKSHEET]
    week_id = get_week_id(now)
    boss = get_weekly_boss(week_id, bosses_ws)
    if boss is None:
        last_week = get_week_contributions(get_week_id(now - timedelta(days=7)), worksheets[config.CONTRIBUTIONS_WORKSHEET])
        boss = default_weekly_boss(now, sum(c.damage_dealt for c in last_week))
        save_weekly_boss(boss, bosses_ws)
        logger.info(f"Published default boss for week {week_id}")
    return boss


def handle_boss_actions(boss, worksheets, datadog_api_key, now: datetime):
    """Handle attack, flavor task and reward claim buttons."""
    if boss is None:
        return

    player = st.session_state.player
    contributions_ws = worksheets[config.CONTRIBUTIONS_WORKSHEET]

    try:
        if st.session_state.pop("boss_attack", False):
            contribution = get_contribution(boss.week_id, player.name, contributions_ws)
            result = attack_boss(player, boss, contribution, now)
            if result.dealt_damage <= 0 and result.player == player:
                return
            commit_attack(result.player, boss.week_id, result.dealt_damage, worksheets)
            st.session_state.player = result.player
            if result.dealt_damage:
                send_completion_metric("boss_attack", "boss", datadog_api_key)
                st.toast(f"💥 Pow! {result.dealt_damage:,} damage!")
            st.rerun()

        elif "flavor_task" in st.session_state:
            task = st.session_state.pop("flavor_task")
            contribution = get_contribution(boss.week_id, player.name, contributions_ws)
            player, contribution = complete_flavor_task(
                player, contribution, str(task.get("id")), int(task.get("exp_value", 0))
            )
            save_contribution(contribution, contributions_ws)
            if not save_player(player, worksheets[config.PLAYERS_WORKSHEET]):
                raise PersistenceError(f"Failed to save player {player.name}")
            st.session_state.player = player
            st.rerun()

        elif st.session_state.pop("boss_claim", False):
            contribution = get_contribution(boss.week_id, player.name, contributions_ws)
            leaderboard = build_leaderboard(get_week_contributions(boss.week_id, contributions_ws))
            player, contribution, reward = claim_rewards(player, boss, contribution, leaderboard)
            save_contribution(contribution, contributions_ws)
            if not save_player(player, worksheets[config.PLAYERS_WORKSHEET]):
                raise PersistenceError(f"Failed to save player {player.name}")
            st.session_state.player = player
            st.success(f"💰 You claimed {reward} credits!")

    except NotEnoughEnergyError:
        st.error("You don't have enough energy!")
    except BossError as e:
        st.error(str(e))
    except (PersistenceError, RateLimitError) as e:
        show_storage_error(e)
        logger.error(f"Boss action failed for {player.name}: {e}")


def main():
    """Main application entry point.

    Orchestrates:
    - Session state initialization
    - Sidebar authentication
    - Tab navigation (Quests, Boss, Guide)
    - Submission handling
    """
    initialize_session_state()

    st.title("⚔️ QuestForge")

    try:
        worksheets = get_worksheets()
        datadog_api_key = get_datadog_api_key()
    except Exception as e:
        st.error("Configuration error. Please contact the administrator.")
        logger.error(f"Failed to load configuration: {e}")
        return

    if not st.session_state.authenticated:
        render_sidebar_auth()
        handle_authentication(worksheets)
        st.info("👈 Please login or create a hero using the sidebar to begin your quest!")
        return

    now = datetime.now(UTC)
    player = st.session_state.player

    st.sidebar.success(f"Logged in as: **{player.name}**")
    if st.sidebar.button("Logout"):
        for key in list(st.session_state.keys()):
            del st.session_state[key]
        st.rerun()

    if "login_notice" in st.session_state:
        st.warning(st.session_state.pop("login_notice"))

    handle_progress_toggles(worksheets, datadog_api_key, now)
    handle_new_quest(worksheets, now)
    handle_quest_delete(worksheets, now)

    try:
        boss = load_weekly_boss(worksheets, now)
        leaderboard = build_leaderboard(
            get_week_contributions(get_week_id(now), worksheets[config.CONTRIBUTIONS_WORKSHEET])
        )
    except (PersistenceError, RateLimitError) as e:
        logger.error(f"Failed to load weekly boss: {e}")
        boss, leaderboard = None, []

    handle_boss_actions(boss, worksheets, datadog_api_key, now)

    render_player_status(st.session_state.player, now)

    tabs = st.tabs(["📜 Quests", "🐉 Boss", "🏰 Guide"])

    with tabs[0]:
        day = st.date_input("Day", value=now.date())
        render_quest_board(active_quests(st.session_state.quests, day), day, now)
        render_new_quest_form()

    with tabs[1]:
        render_boss(boss, st.session_state.player, leaderboard, now)

    with tabs[2]:
        render_guide()


if __name__ == "__main__":
    main()
