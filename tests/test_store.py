"""Tests for per-agent history persistence."""

import json
import os

import pytest

from forkchat import fmt
from forkchat.store import AgentStore, decode_history, default_data_dir
from forkchat.errors import PersistenceError


@pytest.fixture(autouse=True)
def _init_fmt():
    fmt.init(color=False, no_color=True)


def _turns(*contents):
    roles = ("user", "assistant")
    return [{"role": roles[i % 2], "content": c} for i, c in enumerate(contents)]


# ---------------------------------------------------------------------------
# Round trip
# ---------------------------------------------------------------------------


class TestRoundTrip:
    def test_save_then_load(self, tmp_path):
        store = AgentStore(tmp_path)
        history = _turns("hi", "hello")
        assert store.save("main", history) is True
        assert store.load("main") == history

    def test_empty_history(self, tmp_path):
        store = AgentStore(tmp_path)
        store.save("main", [])
        assert store.load("main") == []

    def test_awkward_strings(self, tmp_path):
        store = AgentStore(tmp_path)
        history = _turns(
            "",
            'quote " and backslash \\',
            "line\nbreak\r\n\ttab",
            "unicode é中\U0001f600 and \x00 nul",
            "[bold]not markup[/bold]",
            '{"turns": []}',
        )
        store.save("main", history)
        assert store.load("main") == history

    def test_overwrite_replaces_whole_history(self, tmp_path):
        store = AgentStore(tmp_path)
        store.save("main", _turns("a", "b", "c", "d"))
        store.save("main", _turns("x", "y"))
        assert store.load("main") == _turns("x", "y")

    def test_save_creates_directory(self, tmp_path):
        store = AgentStore(tmp_path / "nested" / "agents")
        assert store.save("work", _turns("q", "a"))
        assert (tmp_path / "nested" / "agents" / "work.json").is_file()

    def test_no_temp_files_left_behind(self, tmp_path):
        store = AgentStore(tmp_path)
        store.save("main", _turns("q", "a"))
        assert sorted(p.name for p in tmp_path.iterdir()) == ["main.json"]

    def test_file_format(self, tmp_path):
        store = AgentStore(tmp_path)
        store.save("work", _turns("q", "a"))
        doc = json.loads((tmp_path / "work.json").read_text(encoding="utf-8"))
        assert doc["version"] == 1
        assert doc["agent"] == "work"
        assert doc["turns"] == [
            {"role": "user", "content": "q"},
            {"role": "assistant", "content": "a"},
        ]


# ---------------------------------------------------------------------------
# Load failures degrade to an empty history
# ---------------------------------------------------------------------------


class TestLoadFailures:
    def test_missing_file_is_empty(self, tmp_path):
        assert AgentStore(tmp_path).load("ghost") == []

    def test_missing_directory_is_empty(self, tmp_path):
        assert AgentStore(tmp_path / "nope").load("main") == []

    def test_invalid_json_warns(self, tmp_path, capsys):
        (tmp_path / "main.json").write_text("{not json", encoding="utf-8")
        assert AgentStore(tmp_path).load("main") == []
        assert "could not load history" in capsys.readouterr().err

    def test_warning_suppressed_when_quiet(self, tmp_path, capsys):
        (tmp_path / "main.json").write_text("{not json", encoding="utf-8")
        assert AgentStore(tmp_path).load("main", verbose=False) == []
        assert capsys.readouterr().err == ""

    def test_odd_length_rejected(self, tmp_path):
        doc = {"version": 1, "turns": [{"role": "user", "content": "dangling"}]}
        (tmp_path / "main.json").write_text(json.dumps(doc), encoding="utf-8")
        assert AgentStore(tmp_path).load("main") == []

    def test_wrong_role_order_rejected(self, tmp_path):
        doc = {
            "turns": [
                {"role": "assistant", "content": "a"},
                {"role": "user", "content": "q"},
            ]
        }
        (tmp_path / "main.json").write_text(json.dumps(doc), encoding="utf-8")
        assert AgentStore(tmp_path).load("main") == []

    def test_invalid_utf8(self, tmp_path):
        (tmp_path / "main.json").write_bytes(b"\xff\xfe\x00garbage")
        assert AgentStore(tmp_path).load("main") == []

    def test_overlong_identifier_warns(self, tmp_path, capsys):
        store = AgentStore(tmp_path)
        agent_id = "a" * 300
        assert store.load(agent_id) == []
        assert store.exists(agent_id) is False
        assert "could not load history" in capsys.readouterr().err

    def test_directory_in_place_of_file(self, tmp_path, capsys):
        (tmp_path / "main.json").mkdir()
        assert AgentStore(tmp_path).load("main") == []
        assert "could not load history" in capsys.readouterr().err


class TestLegacyFormat:
    def test_plain_string_list(self, tmp_path):
        (tmp_path / "main.json").write_text(json.dumps(["hi", "hello"]), encoding="utf-8")
        assert AgentStore(tmp_path).load("main") == _turns("hi", "hello")

    def test_decode_rejects_non_strings(self):
        with pytest.raises(PersistenceError, match="expected string"):
            decode_history(json.dumps(["hi", 3]))


# ---------------------------------------------------------------------------
# Save and delete failures
# ---------------------------------------------------------------------------


class TestWriteFailures:
    def test_save_into_file_path_fails(self, tmp_path, capsys):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = AgentStore(blocker / "agents")
        assert store.save("main", _turns("q", "a")) is False
        assert "could not save history" in capsys.readouterr().err

    @pytest.mark.skipif(
        os.name != "posix" or os.geteuid() == 0, reason="needs non-root POSIX"
    )
    def test_save_read_only_directory(self, tmp_path):
        tmp_path.chmod(0o500)
        try:
            assert AgentStore(tmp_path).save("main", []) is False
        finally:
            tmp_path.chmod(0o700)

    def test_invalid_identifier_refused(self, tmp_path):
        store = AgentStore(tmp_path)
        assert store.save("../escape", []) is False
        assert not (tmp_path.parent / "escape.json").exists()

    def test_delete_is_idempotent(self, tmp_path):
        store = AgentStore(tmp_path)
        store.save("work", _turns("q", "a"))
        assert store.delete("work") is True
        assert store.delete("work") is True
        assert not store.exists("work")


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class TestListIds:
    def test_lists_sorted_agent_files(self, tmp_path):
        store = AgentStore(tmp_path)
        for agent_id in ("zeta", "main", "alpha"):
            store.save(agent_id, [])
        (tmp_path / "Not Valid.json").write_text("[]")
        (tmp_path / "notes.txt").write_text("x")
        assert store.list_ids() == ["alpha", "main", "zeta"]

    def test_missing_directory(self, tmp_path):
        assert AgentStore(tmp_path / "missing").list_ids() == []


class TestDefaultDataDir:
    def test_respects_xdg(self, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
        assert default_data_dir() == tmp_path / "forkchat" / "agents"

    def test_home_fallback(self, monkeypatch):
        monkeypatch.delenv("XDG_DATA_HOME", raising=False)
        assert default_data_dir().parts[-4:] == (".local", "share", "forkchat", "agents")
