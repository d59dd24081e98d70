"""Tests for the command-line entry point."""

import json

import pytest

from mindsplit.main import main, parse_args


@pytest.fixture
def notes(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text(
        "Fix login bug.\nAuth tokens expiring.\nReview dashboard mockups.\nDashboard needs new colors.\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def isolated_env(monkeypatch, tmp_path):
    monkeypatch.setenv("MINDSPLIT_STORE_DIR", str(tmp_path / "store"))
    monkeypatch.setenv("MINDSPLIT_PROVIDER", "hashing")
    monkeypatch.chdir(tmp_path)


class TestParseArgs:
    def test_flags(self):
        args = parse_args(["--input", "x.txt", "-n", "4", "--session", "abc", "--report"])

        assert args.input == "x.txt"
        assert args.n == 4
        assert args.session == "abc"
        assert args.report is True


class TestMain:
    """Tests for a full CLI run."""

    def test_writes_outputs(self, notes, tmp_path, isolated_env):
        out = tmp_path / "out"

        main(["--input", str(notes), "-n", "2", "--output", str(out)])

        payload = json.loads((out / "workstreams.json").read_text(encoding="utf-8"))
        assert len(payload["workstreams"]) == 2
        assert payload["stats"]["chunk_count"] == 4

        rows = [json.loads(line) for line in (out / "chunks_with_workstreams.jsonl").read_text(encoding="utf-8").splitlines()]
        assert [r["id"] for r in rows] == [0, 1, 2, 3]
        assert {r["workstream"] for r in rows} == {0, 1}

    def test_append_and_report(self, notes, tmp_path, isolated_env, capsys):
        out = tmp_path / "out"
        main(["--input", str(notes), "-n", "2", "--output", str(out)])
        session_id = json.loads((out / "workstreams.json").read_text(encoding="utf-8"))["session_id"]

        extra = tmp_path / "extra.txt"
        extra.write_text("Login page times out.\n", encoding="utf-8")
        main(["--input", str(extra), "-n", "2", "--session", session_id, "--output", str(out), "--report"])

        payload = json.loads((out / "workstreams.json").read_text(encoding="utf-8"))
        assert payload["session_id"] == session_id
        assert payload["stats"]["chunk_count"] == 5
        assert payload["stats"]["new_chunks"] == 1
        assert "Bleeding report" in capsys.readouterr().out
