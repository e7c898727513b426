"""Game configuration for QuestForge.

Tunable economy constants and worksheet names. Secrets (service account,
spreadsheet id, Datadog key) are not stored here; they are loaded from
Streamlit secrets by the app entry point.
"""

# Energy system: 1 energy every 10 minutes, 1 energy per boss hit
MAX_ENERGY = 25
ENERGY_REGEN_MINUTES = 10
ENERGY_PER_HIT = 1

# HP system
MAX_HP = 100
HP_PER_TASK_COMPLETED = 5
HP_PER_QUEST_COMPLETED = 10
HP_LOST_PER_MISSED_TASK = 10

# Player economy
STARTING_CREDITS = 500
MAX_TASKS_PER_QUEST = 5
LEADERBOARD_SIZE = 10

# Where bi-weekly completion periods are anchored:
# - "epoch": one global two-week cadence shared by every quest
# - "quest_start": each quest resets on its own start-date cadence,
#   matching the bi-weekly activity schedule
BIWEEKLY_COMPLETION_ANCHOR = "epoch"

# Worksheet names inside the game spreadsheet
PLAYERS_WORKSHEET = "Players"
QUESTS_WORKSHEET = "Quests"
BOSSES_WORKSHEET = "Bosses"
CONTRIBUTIONS_WORKSHEET = "Contributions"

# Weekly boss HP scales with last week's community damage, within these bounds
BOSS_MIN_HP = 50000
BOSS_MAX_HP = 100000
BOSS_HP_GROWTH_PERCENT = 110
