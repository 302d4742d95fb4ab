"""Tests for team manifests and roster activation."""

import pytest

from agentteam.schemas import AgentDefinition, AgentStatus, Severity
from agentteam.teams import (
    DEFAULT_TEAM_NAME,
    TeamManager,
    UnknownTeamError,
    auto_grid_columns,
    load_team_manifest,
    parse_team_manifest,
    purge_sessions,
    session_key,
)


def definitions(*names):
    return {n.lower(): AgentDefinition(name=n, file=f"/agents/{n}.md") for n in names}


class TestParseTeamManifest:
    """Test teams.yaml parsing."""

    def test_ordered_teams_and_members(self):
        teams, warnings = parse_team_manifest("dev:\n  - scout\n  - builder\nreview:\n  - reviewer\n")
        assert list(teams) == ["dev", "review"]
        assert teams["dev"] == ["scout", "builder"]
        assert warnings == []

    def test_empty_document(self):
        assert parse_team_manifest("") == ({}, [])

    def test_invalid_yaml(self):
        teams, warnings = parse_team_manifest("dev: [scout\n")
        assert teams == {}
        assert warnings[0].severity == Severity.ERROR

    def test_top_level_must_be_mapping(self):
        teams, warnings = parse_team_manifest("- scout\n- builder\n")
        assert teams == {}
        assert warnings[0].severity == Severity.ERROR

    def test_non_list_members_dropped(self):
        teams, warnings = parse_team_manifest("dev: scout\nops:\n  - builder\n")
        assert teams == {"ops": ["builder"]}
        assert warnings[0].severity == Severity.WARNING

    def test_missing_file(self, tmp_path):
        assert load_team_manifest(tmp_path / "teams.yaml") == ({}, [])


class TestHelpers:
    """Test grid sizing, session keys and purging."""

    @pytest.mark.parametrize("size,columns", [(0, 0), (1, 1), (2, 2), (3, 3), (4, 2), (5, 3), (9, 3)])
    def test_auto_grid_columns(self, size, columns):
        assert auto_grid_columns(size) == columns

    def test_session_key(self):
        assert session_key("Red Team") == "red-team"
        assert session_key("scout") == "scout"

    def test_purge_sessions(self, tmp_path):
        (tmp_path / "scout.json").write_text("{}")
        (tmp_path / "builder.json").write_text("{}")
        (tmp_path / "notes.txt").write_text("keep")

        assert purge_sessions(tmp_path) == 2
        assert [p.name for p in tmp_path.iterdir()] == ["notes.txt"]

    def test_purge_missing_dir(self, tmp_path):
        assert purge_sessions(tmp_path / "missing") == 0


class TestTeamManager:
    """Test activation semantics."""

    def test_synthesizes_default_team(self, tmp_path):
        manager = TeamManager(definitions("scout", "builder"), {}, tmp_path / "sessions")
        assert manager.team_names == [DEFAULT_TEAM_NAME]
        assert manager.teams[DEFAULT_TEAM_NAME] == ["scout", "builder"]
        assert (tmp_path / "sessions").is_dir()

    def test_activate_builds_idle_states_in_order(self, tmp_path):
        manager = TeamManager(
            definitions("scout", "builder", "reviewer"),
            {"dev": ["builder", "scout"]},
            tmp_path,
        )

        states = manager.activate("dev")

        assert list(states) == ["builder", "scout"]
        assert all(s.status == AgentStatus.IDLE for s in states.values())
        assert manager.active_team == "dev"
        assert manager.grid_columns == 2

    def test_member_lookup_is_case_insensitive_and_skips_unknown(self, tmp_path):
        manager = TeamManager(definitions("Scout"), {"dev": ["SCOUT", "ghost"]}, tmp_path)

        states = manager.activate("dev")

        assert list(states) == ["scout"]
        assert manager.get_state("Scout") is states["scout"]

    def test_activation_resets_state(self, tmp_path):
        manager = TeamManager(definitions("scout"), {"dev": ["scout"]}, tmp_path)
        manager.activate("dev")
        state = manager.get_state("scout")
        state.status = AgentStatus.DONE
        state.run_count = 4

        manager.activate("dev")

        fresh = manager.get_state("scout")
        assert fresh is not state
        assert fresh.status == AgentStatus.IDLE
        assert fresh.run_count == 0

    def test_existing_session_is_resumable(self, tmp_path):
        (tmp_path / "scout.json").write_text("{}")
        manager = TeamManager(definitions("scout", "builder"), {}, tmp_path)

        manager.activate(DEFAULT_TEAM_NAME)

        assert manager.get_state("scout").resumable
        assert manager.get_state("scout").session_file == tmp_path / "scout.json"
        assert not manager.get_state("builder").resumable

    def test_unknown_team(self, tmp_path):
        manager = TeamManager(definitions("scout"), {"dev": ["scout"]}, tmp_path)
        manager.activate("dev")

        with pytest.raises(UnknownTeamError):
            manager.activate("nope")
        assert manager.active_team == "dev"

    def test_grid_columns_override(self, tmp_path):
        manager = TeamManager(definitions("a", "b", "c", "d", "e"), {}, tmp_path)
        manager.activate(DEFAULT_TEAM_NAME)
        assert manager.grid_columns == 3

        manager.set_grid_columns(5)
        assert manager.grid_columns == 5

        with pytest.raises(ValueError):
            manager.set_grid_columns(7)
        with pytest.raises(ValueError):
            manager.set_grid_columns(0)

        manager.activate(DEFAULT_TEAM_NAME)
        assert manager.grid_columns == 3
