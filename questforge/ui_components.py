"""UI components module for QuestForge.

Streamlit rendering functions for the application views:
- Player status with level progress, HP and energy
- Quest cards with task checkboxes and the new-quest form
- Weekly boss panel and leaderboard
- Guide tab
- Sidebar login form

Components never write to storage; user actions are stored in session
state as submissions for the main app to process.
"""

from datetime import date, datetime

import streamlit as st

from questforge import config
from questforge.boss import current_energy
from questforge.leveling import calculate_level_info, level_progress
from questforge.models import STAT_CATEGORIES, Player, Quest, WeeklyBoss
from questforge.recurrence import completion_reference, task_is_done
from questforge.regen import seconds_until_next_point

RECURRENCE_LABELS = {
    "none": "No repeat",
    "once": "Once",
    "daily": "Daily",
    "bi-weekly": "Every two weeks",
    "monthly": "Monthly",
    "days_of_week": "Specific weekdays",
}

WEEKDAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]


def render_player_status(player: Player, now: datetime) -> None:
    """Render level, XP progress, HP and regenerated energy for a player."""
    info = calculate_level_info(player.stats.total)
    energy = current_energy(player, now)

    st.subheader(f"🧙 {player.name} · Level {info.level}")
    st.progress(level_progress(player.stats.total), text=f"{info.xp_in_level} / {info.xp_to_next_level} XP")

    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("HP", f"{player.hp} / {player.max_hp}")
    with col2:
        st.metric("Energy", f"{energy} / {config.MAX_ENERGY}")
        wait = seconds_until_next_point(
            player.last_energy_refill,
            player.energy,
            config.MAX_ENERGY,
            config.ENERGY_REGEN_MINUTES,
            now,
        )
        if wait is not None:
            minutes, seconds = divmod(wait, 60)
            st.caption(f"+1 energy in {minutes:02d}:{seconds:02d}")
    with col3:
        st.metric("Credits", player.credits)

    if player.hp <= 50:
        st.warning("⚠️ Low HP reduces the XP you earn. Complete tasks to heal.")

    stat_cols = st.columns(len(STAT_CATEGORIES))
    for col, category in zip(stat_cols, STAT_CATEGORIES):
        with col:
            st.metric(category.capitalize(), f"{player.stats.get(category)} XP")


def render_quest_card(quest: Quest, day: date, now: datetime) -> None:
    """Render a quest with completion checkbox and task checkboxes.

    Task state is shown as of ``day``. Checkbox changes are stored as
    ``quest_toggle`` / ``task_toggle`` submissions in session state; they
    can only be made on today's board.
    """
    reference = completion_reference(day, now)
    locked = day != now.date()
    with st.container(border=True):
        st.markdown(f"**{quest.title}** · _{quest.exp_category}_")
        if quest.description:
            st.caption(quest.description)

        for task in quest.tasks:
            done = task_is_done(quest, task, reference)
            checked = st.checkbox(
                f"{task.text} (+{task.exp_value} XP)",
                value=done,
                key=f"task_{quest.id}_{task.id}_{day.isoformat()}_{done}",
                disabled=locked,
            )
            if checked != done:
                st.session_state["task_toggle"] = {"quest_id": quest.id, "task_id": task.id}

        col1, col2 = st.columns([3, 1])
        with col1:
            label = f"Quest complete (+{quest.exp_value} XP)" if quest.exp_value else "Quest complete"
            completed = st.checkbox(
                label,
                value=quest.completed,
                key=f"quest_{quest.id}_done_{quest.completed}",
                disabled=locked,
            )
            if completed != quest.completed:
                st.session_state["quest_toggle"] = {"quest_id": quest.id, "completed": completed}
        with col2:
            if st.button("🗑️ Delete", key=f"quest_{quest.id}_delete"):
                st.session_state["quest_delete"] = quest.id


def render_quest_board(quests: list[Quest], day: date, now: datetime) -> None:
    st.header(f"📜 Quests for {day.strftime('%A, %d %B')}")
    if not quests:
        st.info("No quests scheduled for this day. Create one below!")
    if day != now.date():
        st.caption("Viewing another day: progress can only be checked off on today's board.")
    for quest in quests:
        render_quest_card(quest, day, now)


def render_new_quest_form() -> None:
    """Render the new-quest form; submissions go to ``new_quest_submission``."""
    with st.expander("➕ New Quest"):
        with st.form(key="new_quest_form", clear_on_submit=True):
            title = st.text_input("Title", max_chars=100)
            description = st.text_area("Description", max_chars=500, height=80)
            category = st.selectbox("Stat category", STAT_CATEGORIES)
            exp_value = st.number_input("Bonus XP", min_value=0, max_value=500, value=10, step=5)
            start_date = st.date_input("Start date", value=None)
            due_date = st.date_input("Due date", value=None)
            recurrence_type = st.selectbox(
                "Repeat",
                list(RECURRENCE_LABELS),
                format_func=RECURRENCE_LABELS.get,
            )
            days = st.multiselect(
                "Weekdays (for specific weekdays)",
                list(range(7)),
                format_func=lambda d: WEEKDAY_NAMES[d],
            )
            task_lines = st.text_area(
                f"Tasks, one per line (max {config.MAX_TASKS_PER_QUEST})",
                height=100,
            )
            task_xp = st.number_input("XP per task", min_value=1, max_value=100, value=5)

            if st.form_submit_button("Create Quest"):
                st.session_state["new_quest_submission"] = {
                    "title": title,
                    "description": description,
                    "exp_category": category,
                    "exp_value": int(exp_value),
                    "start_date": start_date,
                    "due_date": due_date,
                    "recurrence_type": recurrence_type,
                    "days": days,
                    "tasks": [line.strip() for line in task_lines.splitlines() if line.strip()],
                    "task_xp": int(task_xp),
                }


def render_boss(boss: WeeklyBoss | None, player: Player, leaderboard: list, now: datetime) -> None:
    """Render the weekly boss, the attack button and the leaderboard."""
    st.header("🐉 Weekly Boss")

    if boss is None:
        st.info("The weekly boss hasn't appeared yet. Check back later!")
        return

    st.subheader(boss.title)
    st.write(boss.description)
    hp_fraction = boss.current_hp / boss.total_hp if boss.total_hp else 0.0
    st.progress(hp_fraction, text=f"{boss.current_hp:,} / {boss.total_hp:,} HP")
    st.caption(f"Disappears {boss.disappearance_date.strftime('%A %d %B, %H:%M')}")

    if boss.is_defeated:
        st.success("🏆 The boss has been defeated!")
        if st.button("Claim reward", key="boss_claim_button"):
            st.session_state["boss_claim"] = True
    else:
        energy = current_energy(player, now)
        cost = player.pending_hit_count * config.ENERGY_PER_HIT
        st.write(
            f"Pending damage: **{player.pending_boss_damage}** "
            f"({player.pending_hit_count} hits, costs {cost} energy, you have {energy})"
        )
        if st.button("⚔️ Attack", key="boss_attack_button", disabled=player.pending_boss_damage <= 0):
            st.session_state["boss_attack"] = True

    flavor_tasks = boss.flavor_quest.get("tasks") or []
    if flavor_tasks:
        st.markdown(f"**{boss.flavor_quest.get('title', 'Bonus quest')}**")
        for task in flavor_tasks:
            if st.button(f"{task.get('text')} (+{task.get('exp_value', 0)} damage)", key=f"flavor_{task.get('id')}"):
                st.session_state["flavor_task"] = task

    st.subheader("🏅 Leaderboard")
    if not leaderboard:
        st.caption("No damage dealt yet this week.")
    for entry in leaderboard:
        st.write(f"{entry.rank}. **{entry.player_name}** · {entry.damage_dealt:,} damage")


def render_guide() -> None:
    """Render the guide tab explaining quests, XP, HP and the boss fight."""
    st.header("🏰 Guide")

    st.subheader("📖 Quests & Tasks")
    st.markdown("""
    Create **quests** for your goals and break them into repeatable **tasks**.
    A quest can repeat daily, on chosen weekdays, every two weeks or monthly.
    Tasks reset at the start of every period of their quest.
    """)

    st.divider()

    st.subheader("✨ XP & Levels")
    st.markdown(f"""
    - Every quest earns XP in **Strength**, **Intelligence** or **Soul**
    - Levels get steeper: level 2 needs **100 XP**, level 3 another **282 XP**
    - Completing a task heals **{config.HP_PER_TASK_COMPLETED} HP**, a quest heals **{config.HP_PER_QUEST_COMPLETED} HP**
    - Each missed task costs **{config.HP_LOST_PER_MISSED_TASK} HP**
    - Below **50 HP** you earn less XP (down to 40%), below **10 HP** just 1 XP
    """)

    st.divider()

    st.subheader("🐉 The Weekly Boss")
    st.markdown(f"""
    The XP you earn becomes damage against a boss shared by every player.
    Each hit costs **{config.ENERGY_PER_HIT} energy**; energy refills by one every
    **{config.ENERGY_REGEN_MINUTES} minutes** up to **{config.MAX_ENERGY}**.
    Top 10 damage dealers claim credits once the boss falls.
    """)


def render_sidebar_auth() -> None:
    """Render the login form in the sidebar.

    Stores input in session state for processing by main app.
    """
    st.sidebar.header("🎮 Player Login")
    st.sidebar.markdown("Enter your name and PIN to login or create a new hero.")

    with st.sidebar.form(key="auth_form"):
        player_name = st.text_input("Name:", max_chars=50, key="auth_player_name_input")
        pin = st.text_input("PIN:", type="password", max_chars=20, key="auth_pin_input")

        if st.form_submit_button("Login / Create Hero"):
            st.session_state["auth_submission"] = {
                "player_name": player_name,
                "pin": pin
            }
