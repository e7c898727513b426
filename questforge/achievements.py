"""Counter-based achievements."""

ACHIEVEMENTS = [
    {
        "id": "quest_1",
        "name": "And So It Begins",
        "description": "Complete your first quest.",
        "counter": "quests_completed",
        "threshold": 1,
    },
    {
        "id": "quest_10",
        "name": "Getting the Hang of It",
        "description": "Complete 10 quests. A habit is forming.",
        "counter": "quests_completed",
        "threshold": 10,
    },
    {
        "id": "quest_100",
        "name": "Quest Master",
        "description": "Complete 100 quests. You're serious about this.",
        "counter": "quests_completed",
        "threshold": 100,
    },
    {
        "id": "task_1",
        "name": "A Single Step",
        "description": "Complete your first daily task.",
        "counter": "tasks_completed",
        "threshold": 1,
    },
    {
        "id": "task_25",
        "name": "Steady Progress",
        "description": "Complete 25 daily tasks. Momentum is building.",
        "counter": "tasks_completed",
        "threshold": 25,
    },
    {
        "id": "task_100",
        "name": "Task Titan",
        "description": "Complete 100 daily tasks. You are unstoppable.",
        "counter": "tasks_completed",
        "threshold": 100,
    },
]


def newly_unlocked(counters: dict, unlocked_ids) -> list[dict]:
    """Return achievements whose threshold is met but are not unlocked yet.

    Args:
        counters: Dict with 'quests_completed' and 'tasks_completed'
        unlocked_ids: Ids the player already holds

    Returns:
        Achievement dicts in definition order
    """
    unlocked = set(unlocked_ids)
    return [
        achievement
        for achievement in ACHIEVEMENTS
        if achievement["id"] not in unlocked
        and counters.get(achievement["counter"], 0) >= achievement["threshold"]
    ]
