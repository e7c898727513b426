"""
Unit tests for database module.
"""

import json
import re
from dataclasses import replace
from datetime import datetime, UTC

import pytest

from questforge import config
from questforge.database import (
    BOSS_COLUMNS,
    CONTRIBUTION_COLUMNS,
    PLAYER_COLUMNS,
    QUEST_COLUMNS,
    PersistenceError,
    RateLimitError,
    add_contribution_damage,
    add_quest,
    apply_boss_damage,
    commit_attack,
    commit_progress,
    create_player,
    delete_quest,
    ensure_headers,
    get_contribution,
    get_player,
    get_player_quests,
    get_week_contributions,
    get_weekly_boss,
    retry_with_backoff,
    save_contribution,
    save_player,
    save_quest,
    save_weekly_boss,
    update_player_pin,
)
from questforge.models import BossContribution, DaysOfWeek, Quest, Stats, Task, WeeklyBoss


class MockSheetsClient:
    """Mock Google Sheets worksheet for testing."""

    def __init__(self, columns=None):
        self.columns = list(columns) if columns else []
        self.rows = []
        self.fail_count = 0
        self.fail_with_rate_limit = False
        self.fail_with_error = False
        self.ranges = []

    def _maybe_fail(self):
        if self.fail_with_rate_limit and self.fail_count > 0:
            self.fail_count -= 1
            raise Exception("Rate limit exceeded (429)")
        if self.fail_with_error:
            raise Exception("Connection error")

    def row_values(self, row_num):
        """Mock row_values method (header row only)."""
        self._maybe_fail()
        return list(self.columns)

    def get_all_records(self):
        """Mock get_all_records method."""
        self._maybe_fail()
        return [dict(zip(self.columns, row)) for row in self.rows]

    def append_row(self, row):
        """Mock append_row method."""
        self._maybe_fail()
        if not self.columns:
            self.columns = list(row)
        else:
            self.rows.append(list(row))

    def update(self, range_name, values):
        """Mock update method for a single A1 row range."""
        self._maybe_fail()
        self.ranges.append(range_name)
        row_num = int(re.match(r"A(\d+):", range_name).group(1))
        self.rows[row_num - 2] = list(values[0])

    def update_cell(self, row_num, col_num, value):
        """Mock update_cell method."""
        self._maybe_fail()
        if row_num - 2 < len(self.rows):  # -2 for header and 1-indexing
            self.rows[row_num - 2][col_num - 1] = value

    def delete_rows(self, row_num):
        """Mock delete_rows method."""
        self._maybe_fail()
        del self.rows[row_num - 2]


class NumericisingSheetsClient(MockSheetsClient):
    """Mock worksheet that, like gspread, turns digit-only cells into ints."""

    def get_all_records(self):
        return [
            {key: int(value) if isinstance(value, str) and value.isdigit() else value
             for key, value in record.items()}
            for record in super().get_all_records()
        ]


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr("questforge.database.time.sleep", lambda seconds: None)


@pytest.fixture
def players():
    return MockSheetsClient(PLAYER_COLUMNS)


@pytest.fixture
def quests():
    return MockSheetsClient(QUEST_COLUMNS)


def make_quest(quest_id="q1", created_at=None):
    return Quest(
        id=quest_id,
        title="Read a chapter",
        created_at=created_at or datetime(2024, 1, 1, 8, tzinfo=UTC),
        exp_category="intelligence",
        tasks=[Task(id="t1", text="Pages 1-20", exp_value=15)],
        exp_value=40,
        recurrence=DaysOfWeek(frozenset({1, 3, 5})),
    )


class TestRetryWithBackoff:
    """Test retry with exponential backoff functionality."""

    def test_retry_success_first_attempt(self):
        """Function succeeds on first attempt."""
        call_count = [0]

        def success_func():
            call_count[0] += 1
            return "success"

        assert retry_with_backoff(success_func) == "success"
        assert call_count[0] == 1

    def test_retry_success_after_rate_limit(self):
        """Function succeeds after rate limit error."""
        call_count = [0]

        def rate_limit_then_success():
            call_count[0] += 1
            if call_count[0] == 1:
                raise Exception("Quota exceeded for quota metric 'Read requests'")
            return "success"

        assert retry_with_backoff(rate_limit_then_success) == "success"
        assert call_count[0] == 2

    def test_retry_exhausted_rate_limit(self):
        """All retries exhausted with rate limit errors."""
        call_count = [0]

        def always_rate_limit():
            call_count[0] += 1
            raise Exception("Rate limit exceeded (429)")

        with pytest.raises(RateLimitError):
            retry_with_backoff(always_rate_limit, max_attempts=3)
        assert call_count[0] == 3

    def test_retry_non_rate_limit_error(self):
        """Non-rate-limit errors raise immediately."""
        call_count = [0]

        def connection_error():
            call_count[0] += 1
            raise Exception("Connection failed")

        with pytest.raises(PersistenceError):
            retry_with_backoff(connection_error)
        assert call_count[0] == 1

    def test_persistence_error_passes_through(self):
        """PersistenceError from the operation is not wrapped again."""
        def not_found():
            raise PersistenceError("Player 'x' not found")

        with pytest.raises(PersistenceError, match="Player 'x' not found"):
            retry_with_backoff(not_found)


class TestEnsureHeaders:
    """Test worksheet header setup."""

    def test_empty_sheet_gets_header(self):
        """An empty worksheet receives the header row."""
        client = MockSheetsClient()
        ensure_headers(client, QUEST_COLUMNS)
        assert client.columns == QUEST_COLUMNS

    def test_matching_header_untouched(self):
        """A correct header is left alone."""
        client = MockSheetsClient(QUEST_COLUMNS)
        ensure_headers(client, QUEST_COLUMNS)
        assert client.rows == []

    def test_mismatched_header(self):
        """A different header row is reported."""
        client = MockSheetsClient(["Team_Name", "PIN_Hash"])
        with pytest.raises(PersistenceError):
            ensure_headers(client, QUEST_COLUMNS)


class TestPlayers:
    """Test player persistence."""

    def test_get_player_not_found(self, players):
        """Missing players return None."""
        assert get_player("nobody", players) is None

    def test_create_player_defaults(self, players):
        """New players start with full HP, full energy and starting credits."""
        player = create_player("hero", "hashed", players)

        assert player.hp == config.MAX_HP
        assert player.energy == config.MAX_ENERGY
        assert player.credits == config.STARTING_CREDITS
        assert player.last_energy_refill is not None
        assert len(players.rows) == 1
        assert players.rows[0][0] == "hero"

    def test_create_then_get(self, players):
        """A created player reads back with the same state."""
        create_player("hero", "hashed", players)
        player = get_player("hero", players)

        assert player.name == "hero"
        assert player.pin_hash == "hashed"
        assert player.stats == Stats()
        assert player.achievements == ()
        assert player.last_energy_refill.tzinfo is not None

    def test_exact_name_match(self, players):
        """Lookups do not match on prefixes."""
        create_player("hero2", "hashed", players)
        assert get_player("hero", players) is None

    def test_save_player_round_trip(self, players):
        """Saved stats, counters and achievements read back unchanged."""
        player = create_player("hero", "hashed", players)
        updated = replace(
            player,
            stats=Stats(strength_exp=12, intelligence_exp=5, soul_exp=7),
            hp=64,
            pending_boss_damage=30,
            pending_hit_count=2,
            quests_completed=3,
            achievements=("quest_1", "task_1"),
        )

        assert save_player(updated, players) is True
        stored = get_player("hero", players)
        assert stored.stats == updated.stats
        assert stored.hp == 64
        assert stored.pending_boss_damage == 30
        assert stored.pending_hit_count == 2
        assert stored.quests_completed == 3
        assert stored.achievements == ("quest_1", "task_1")

    def test_save_unknown_player_returns_false(self, players):
        """Saving a player without a row fails softly."""
        player = create_player("hero", "hashed", MockSheetsClient(PLAYER_COLUMNS))
        assert save_player(player, players) is False

    def test_save_player_connection_error_returns_false(self, players):
        """Storage errors during save are reported as False."""
        player = create_player("hero", "hashed", players)
        players.fail_with_error = True
        assert save_player(player, players) is False

    def test_get_player_retries_rate_limit(self, players):
        """Reads retry after a rate limit."""
        create_player("hero", "hashed", players)
        players.fail_with_rate_limit = True
        players.fail_count = 1
        assert get_player("hero", players).name == "hero"

    def test_update_player_pin(self, players):
        """Admin PIN reset rewrites the hash column."""
        create_player("hero", "old", players)
        assert update_player_pin("hero", "new", players) is True
        assert get_player("hero", players).pin_hash == "new"

    def test_update_pin_unknown_player(self, players):
        """PIN reset for an unknown player returns False."""
        assert update_player_pin("nobody", "new", players) is False

    def test_numeric_name_found(self):
        """A digit-only name read back as an int still matches."""
        client = NumericisingSheetsClient(PLAYER_COLUMNS)
        create_player("1234", "hashed", client)

        player = get_player("1234", client)
        assert player is not None
        assert player.name == "1234"
        assert save_player(replace(player, hp=80), client) is True
        assert update_player_pin("1234", "new", client) is True
        assert len(client.rows) == 1

    def test_save_writes_whole_row_range(self, players):
        """A saved player overwrites columns A through Q of their row."""
        create_player("first", "hashed", players)
        player = create_player("hero", "hashed", players)
        save_player(player, players)
        assert players.ranges == ["A3:Q3"]


class TestQuests:
    """Test quest persistence."""

    def test_add_and_get_quest(self, quests):
        """Quests are stored as JSON and read back intact."""
        quest = make_quest()
        add_quest("hero", quest, quests)

        stored = get_player_quests("hero", quests)
        assert len(stored) == 1
        assert stored[0].id == "q1"
        assert stored[0].recurrence == DaysOfWeek(frozenset({1, 3, 5}))
        assert stored[0].tasks[0].exp_value == 15
        assert json.loads(quests.rows[0][2])["recurrence"] == {"type": "days_of_week", "days": [1, 3, 5]}

    def test_quests_filtered_by_player_newest_first(self, quests):
        """Only the player's own quests are returned, newest first."""
        add_quest("hero", make_quest("old", datetime(2024, 1, 1, tzinfo=UTC)), quests)
        add_quest("hero", make_quest("new", datetime(2024, 2, 1, tzinfo=UTC)), quests)
        add_quest("villain", make_quest("other"), quests)

        assert [q.id for q in get_player_quests("hero", quests)] == ["new", "old"]

    def test_save_quest(self, quests):
        """Saving overwrites the quest's row."""
        quest = make_quest()
        add_quest("hero", quest, quests)
        assert save_quest("hero", replace(quest, completed=True), quests) is True
        assert get_player_quests("hero", quests)[0].completed is True

    def test_save_quest_wrong_player(self, quests):
        """A quest cannot be saved over another player's row."""
        add_quest("hero", make_quest(), quests)
        assert save_quest("villain", make_quest(), quests) is False

    def test_delete_quest(self, quests):
        """Deleting removes the row."""
        add_quest("hero", make_quest("a"), quests)
        add_quest("hero", make_quest("b"), quests)

        assert delete_quest("hero", "a", quests) is True
        assert [q.id for q in get_player_quests("hero", quests)] == ["b"]

    def test_delete_missing_quest(self, quests):
        """Deleting an unknown quest returns False."""
        assert delete_quest("hero", "missing", quests) is False

    def test_corrupt_quest_rows_skipped(self, quests):
        """Unreadable quest rows are skipped and the valid quests still load."""
        add_quest("hero", make_quest("good"), quests)
        quests.rows.append(["bad_json", "hero", "{not json", "2024-01-01T00:00:00Z"])
        bad_category = make_quest("bad_category").to_dict()
        bad_category["exp_category"] = "charisma"
        quests.rows.append(["bad_category", "hero", json.dumps(bad_category), "2024-01-01T00:00:00Z"])

        assert [q.id for q in get_player_quests("hero", quests)] == ["good"]

    def test_out_of_range_weekday_still_loads(self, quests):
        """A stored weekday outside 0-6 does not hide the quest."""
        stored = make_quest("odd_days").to_dict()
        stored["recurrence"] = {"type": "days_of_week", "days": [1, 7]}
        quests.rows.append(["odd_days", "hero", json.dumps(stored), "2024-01-01T00:00:00Z"])

        loaded = get_player_quests("hero", quests)
        assert loaded[0].recurrence == DaysOfWeek(frozenset({1}))

    def test_quests_for_numeric_player_name(self):
        """Quests of a digit-only player name are found."""
        client = NumericisingSheetsClient(QUEST_COLUMNS)
        add_quest("1234", make_quest(), client)
        assert [q.id for q in get_player_quests("1234", client)] == ["q1"]


class TestBossesAndContributions:
    """Test weekly boss and contribution persistence."""

    def make_boss(self, current_hp=5000):
        return WeeklyBoss(
            week_id="2024-02",
            title="Hydra",
            description="Many heads",
            total_hp=5000,
            current_hp=current_hp,
            appearance_date=datetime(2024, 1, 8, tzinfo=UTC),
            disappearance_date=datetime(2024, 1, 14, 23, 59, 59, tzinfo=UTC),
            taunts=("Ha!",),
            flavor_quest={"title": "Slay", "tasks": [{"id": "f1", "text": "Walk", "exp_value": 100}]},
        )

    def test_missing_boss(self):
        """Weeks without a boss return None."""
        assert get_weekly_boss("2024-02", MockSheetsClient(BOSS_COLUMNS)) is None

    def test_boss_upsert(self):
        """Saving a boss twice updates the same row."""
        client = MockSheetsClient(BOSS_COLUMNS)
        save_weekly_boss(self.make_boss(), client)
        save_weekly_boss(self.make_boss(current_hp=1200), client)

        assert len(client.rows) == 1
        boss = get_weekly_boss("2024-02", client)
        assert boss.current_hp == 1200
        assert boss.taunts == ("Ha!",)
        assert boss.flavor_quest["tasks"][0]["id"] == "f1"
        assert boss.is_defeated is False

    def test_defeated_flag_from_sheet_text(self):
        """Sheet booleans stored as text are read correctly."""
        client = MockSheetsClient(BOSS_COLUMNS)
        save_weekly_boss(self.make_boss(), client)
        client.rows[0][7] = "TRUE"
        assert get_weekly_boss("2024-02", client).is_defeated is True

    def test_empty_contribution_default(self):
        """Players who have not fought get an empty contribution."""
        contribution = get_contribution("2024-02", "hero", MockSheetsClient(CONTRIBUTION_COLUMNS))
        assert contribution == BossContribution(week_id="2024-02", player_name="hero")

    def test_contribution_upsert_and_week_listing(self):
        """Contributions are upserted per player and listed per week."""
        client = MockSheetsClient(CONTRIBUTION_COLUMNS)
        save_contribution(BossContribution("2024-02", "hero", 50), client)
        save_contribution(BossContribution("2024-02", "hero", 80, completed_flavor_tasks=("f1",)), client)
        save_contribution(BossContribution("2024-02", "ann", 20), client)
        save_contribution(BossContribution("2024-01", "hero", 999), client)

        hero = get_contribution("2024-02", "hero", client)
        assert hero.damage_dealt == 80
        assert hero.completed_flavor_tasks == ("f1",)
        assert {c.player_name for c in get_week_contributions("2024-02", client)} == {"hero", "ann"}

    def test_contribution_for_numeric_player_name(self):
        """Contribution upserts match digit-only player names."""
        client = NumericisingSheetsClient(CONTRIBUTION_COLUMNS)
        save_contribution(BossContribution("2024-02", "1234", 50), client)
        save_contribution(BossContribution("2024-02", "1234", 80), client)

        assert len(client.rows) == 1
        assert get_contribution("2024-02", "1234", client).damage_dealt == 80


def store_boss(client, current_hp=5000):
    boss = WeeklyBoss(
        week_id="2024-02",
        title="Hydra",
        description="Many heads",
        total_hp=5000,
        current_hp=current_hp,
        appearance_date=datetime(2024, 1, 8, tzinfo=UTC),
        disappearance_date=datetime(2024, 1, 14, 23, 59, 59, tzinfo=UTC),
    )
    save_weekly_boss(boss, client)


class TestBossDamageDeltas:
    """Test damage applied against the stored boss and contribution rows."""

    def test_damage_applied_to_stored_row(self):
        """Each call subtracts from the HP currently stored, not from a stale copy."""
        client = MockSheetsClient(BOSS_COLUMNS)
        store_boss(client)

        apply_boss_damage("2024-02", 200, client)
        boss = apply_boss_damage("2024-02", 300, client)

        assert boss.current_hp == 4500
        assert get_weekly_boss("2024-02", client).current_hp == 4500

    def test_negative_damage_heals_to_total(self):
        """Healing stops at the boss's total HP."""
        client = MockSheetsClient(BOSS_COLUMNS)
        store_boss(client, current_hp=4900)
        assert apply_boss_damage("2024-02", -300, client).current_hp == 5000

    def test_missing_boss(self):
        """Damage to a week without a boss is a no-op."""
        assert apply_boss_damage("2024-02", 100, MockSheetsClient(BOSS_COLUMNS)) is None

    def test_contribution_created_and_added(self):
        """Damage creates the contribution row and then adds to it."""
        client = MockSheetsClient(CONTRIBUTION_COLUMNS)
        add_contribution_damage("2024-02", "hero", 50, client)
        contribution, applied = add_contribution_damage("2024-02", "hero", 30, client)

        assert applied == 30
        assert contribution.damage_dealt == 80
        assert len(client.rows) == 1

    def test_contribution_never_negative(self):
        """Taking back more than was dealt stops at zero."""
        client = MockSheetsClient(CONTRIBUTION_COLUMNS)
        save_contribution(BossContribution("2024-02", "hero", 10), client)

        contribution, applied = add_contribution_damage("2024-02", "hero", -50, client)
        assert contribution.damage_dealt == 0
        assert applied == -10


class TestCommits:
    """Test the write order of multi-worksheet changes."""

    @pytest.fixture
    def worksheets(self, players, quests):
        bosses = MockSheetsClient(BOSS_COLUMNS)
        store_boss(bosses)
        return {
            config.PLAYERS_WORKSHEET: players,
            config.QUESTS_WORKSHEET: quests,
            config.BOSSES_WORKSHEET: bosses,
            config.CONTRIBUTIONS_WORKSHEET: MockSheetsClient(CONTRIBUTION_COLUMNS),
        }

    def boss_hp(self, worksheets):
        return get_weekly_boss("2024-02", worksheets[config.BOSSES_WORKSHEET]).current_hp

    def test_attack_commits_player_then_damage(self, worksheets):
        """A committed attack clears pending damage and lands the hit."""
        player = create_player("hero", "hashed", worksheets[config.PLAYERS_WORKSHEET])

        commit_attack(replace(player, energy=3), "2024-02", 300, worksheets)

        assert get_player("hero", worksheets[config.PLAYERS_WORKSHEET]).energy == 3
        assert self.boss_hp(worksheets) == 4700
        assert get_contribution("2024-02", "hero", worksheets[config.CONTRIBUTIONS_WORKSHEET]).damage_dealt == 300

    def test_attack_player_write_failure_leaves_boss_untouched(self, worksheets):
        """If the player cannot be saved, no damage reaches the boss."""
        player = create_player("hero", "hashed", worksheets[config.PLAYERS_WORKSHEET])
        worksheets[config.PLAYERS_WORKSHEET].fail_with_error = True

        with pytest.raises(PersistenceError):
            commit_attack(player, "2024-02", 300, worksheets)

        assert self.boss_hp(worksheets) == 5000
        assert worksheets[config.CONTRIBUTIONS_WORKSHEET].rows == []

    def test_attack_boss_write_failure_keeps_player(self, worksheets):
        """A failed boss write after the player was saved is logged, not raised."""
        player = create_player("hero", "hashed", worksheets[config.PLAYERS_WORKSHEET])
        worksheets[config.BOSSES_WORKSHEET].fail_with_error = True

        commit_attack(replace(player, energy=3), "2024-02", 300, worksheets)

        assert get_player("hero", worksheets[config.PLAYERS_WORKSHEET]).energy == 3

    def test_progress_reversal_heals_only_dealt_damage(self, worksheets):
        """Reversed damage heals the boss by at most what the player dealt."""
        player = create_player("hero", "hashed", worksheets[config.PLAYERS_WORKSHEET])
        commit_attack(player, "2024-02", 100, worksheets)

        commit_progress(player, None, "2024-02", 150, worksheets)

        assert self.boss_hp(worksheets) == 5000
        assert get_contribution("2024-02", "hero", worksheets[config.CONTRIBUTIONS_WORKSHEET]).damage_dealt == 0

    def test_progress_save_failure_leaves_boss_untouched(self, worksheets):
        """If the quest cannot be saved, the boss is not healed."""
        player = create_player("hero", "hashed", worksheets[config.PLAYERS_WORKSHEET])
        commit_attack(player, "2024-02", 100, worksheets)

        # The quest has no row, so saving it fails
        with pytest.raises(PersistenceError):
            commit_progress(player, make_quest(), "2024-02", 100, worksheets)

        assert self.boss_hp(worksheets) == 4900

    def test_progress_saves_quest_and_player(self, worksheets):
        """Quest and player changes are both written."""
        player = create_player("hero", "hashed", worksheets[config.PLAYERS_WORKSHEET])
        quest = make_quest()
        add_quest("hero", quest, worksheets[config.QUESTS_WORKSHEET])

        commit_progress(replace(player, hp=70), replace(quest, completed=True), "2024-02", 0, worksheets)

        assert get_player("hero", worksheets[config.PLAYERS_WORKSHEET]).hp == 70
        assert get_player_quests("hero", worksheets[config.QUESTS_WORKSHEET])[0].completed is True
