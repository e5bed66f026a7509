"""Tests for note discovery and --since parsing."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from forage.config import ConfigError
from forage.vault.notes import load_notes, parse_since

NOW = datetime(2026, 2, 23, 12, 0, tzinfo=timezone.utc)


class TestParseSince:
    @pytest.mark.parametrize(
        "value,delta",
        [
            ("7d", timedelta(days=7)),
            ("12h", timedelta(hours=12)),
            ("30m", timedelta(minutes=30)),
            (" 2D ", timedelta(days=2)),
        ],
    )
    def test_relative(self, value, delta):
        assert parse_since(value, now=NOW) == NOW - delta

    def test_iso_date_is_utc(self):
        assert parse_since("2026-01-31", now=NOW) == datetime(2026, 1, 31, tzinfo=timezone.utc)

    def test_iso_datetime_with_offset(self):
        assert parse_since("2026-01-31T02:00:00+02:00") == datetime(2026, 1, 31, 0, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_empty_is_none(self, value):
        assert parse_since(value) is None

    @pytest.mark.parametrize("value", ["yesterday", "7w", "d7", "2026-13-01"])
    def test_invalid_raises(self, value):
        with pytest.raises(ConfigError, match="Invalid --since"):
            parse_since(value)


class TestLoadNotes:
    def test_finds_markdown_recursively_sorted(self, vault: Path, write_note):
        write_note("b.md", "b")
        write_note("Projects/a.md", "a")
        write_note("A.md", "A")
        write_note("readme.txt", "not a note")

        notes = load_notes(vault)

        assert [n.rel_path for n in notes] == ["A.md", "Projects/a.md", "b.md"]
        assert notes[1].content == "a"
        assert notes[1].path == (vault / "Projects" / "a.md").resolve()

    def test_skips_tooling_and_hidden_dirs(self, vault: Path, write_note):
        write_note(".obsidian/workspace.md", "x")
        write_note("node_modules/pkg/README.md", "x")
        write_note(".forage/notes.md", "x")
        write_note(".trash/old.md", "x")
        write_note("Ideas.md", "keep")

        assert [n.rel_path for n in load_notes(vault)] == ["Ideas.md"]

    def test_excluded_dir_is_skipped(self, vault: Path, write_note):
        write_note("Inbox/Findings/2026-02-23 - x.md", "finding")
        write_note("Inbox/Findings/Run Summaries/s.md", "summary")
        write_note("Inbox/todo.md", "keep")

        notes = load_notes(vault, exclude=[vault / "Inbox" / "Findings"])

        assert [n.rel_path for n in notes] == ["Inbox/todo.md"]

    def test_since_filters_by_mtime(self, vault: Path, write_note):
        old = NOW - timedelta(days=10)
        recent = NOW - timedelta(hours=1)
        write_note("old.md", "old", mtime=old.timestamp())
        write_note("recent.md", "recent", mtime=recent.timestamp())

        notes = load_notes(vault, since=NOW - timedelta(days=7))

        assert [n.rel_path for n in notes] == ["recent.md"]
        assert notes[0].mtime == pytest.approx(recent.timestamp())

    def test_undecodable_note_is_skipped(self, vault: Path, write_note):
        (vault / "binary.md").write_bytes(b"\xff\xfe\x00bad")
        write_note("good.md", "fine")
        assert [n.rel_path for n in load_notes(vault)] == ["good.md"]

    def test_empty_vault(self, vault: Path):
        assert load_notes(vault) == []
