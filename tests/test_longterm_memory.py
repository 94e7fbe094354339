from __future__ import annotations

import json
import os
import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path
from unittest.mock import patch

from mate.memory import markdown
from mate.memory.longterm import (
    LongTermMemoryStore,
    MemoryFile,
    MigrationStatus,
    StorageError,
)

LEGACY_MEMORY_MD = """# Long-Term Memory

<!-- edit freely -->

## Preferences
- **Language**: Spanish
- **Tone**: casual

## Context
- **Name**: Ana
- **Location**: Rosario
Works mostly from home.

## Important Files

## Notes
Call the bank on Friday.
"""


class _Clock:
    def __init__(self) -> None:
        self.moment = datetime(2026, 3, 14, 9, 30, 0)

    def today(self) -> date:
        return self.moment.date()

    def now(self) -> datetime:
        return self.moment


class LongTermMemoryTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.clock = _Clock()
        self.store = LongTermMemoryStore(self.root, today=self.clock.today, now=self.clock.now)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _read(self, user_id: str, name: str) -> str:
        return (self.store.memory_dir(user_id) / name).read_text(encoding="utf-8")

    def test_ensure_initialized_creates_templates(self) -> None:
        self.store.ensure_initialized("u1")
        about = self._read("u1", "about.md")
        self.assertIn("- **Name**:", about)
        self.assertIn("*Last updated: 2026-03-14*", about)
        self.assertIn("- **Tone**:", self._read("u1", "preferences.md"))
        self.assertTrue((self.store.memory_dir("u1") / "notes").is_dir())
        self.assertTrue((self.store.memory_dir("u1") / "journal").is_dir())

    def test_remember_then_recall(self) -> None:
        self.store.remember("u1", "Name", "Ana")
        fact = self.store.recall("u1", "name")
        self.assertIsNotNone(fact)
        assert fact is not None
        self.assertEqual(fact.value, "Ana")
        self.assertEqual(fact.file, MemoryFile.ABOUT)

    def test_remember_upserts_without_duplicating(self) -> None:
        self.store.remember("u1", "Name", "Ana")
        self.store.remember("u1", "Name", "Ana María")
        about = self._read("u1", "about.md")
        self.assertEqual(about.count("**Name**"), 1)
        self.assertIn("- **Name**: Ana María", about)

    def test_new_key_is_inserted_after_last_item(self) -> None:
        self.store.remember("u1", "Pet", "Cat called Mishi")
        lines = self._read("u1", "about.md").splitlines()
        self.assertEqual(lines[lines.index("- **Work**:") + 1], "- **Pet**: Cat called Mishi")

    def test_remember_refreshes_last_updated(self) -> None:
        self.store.ensure_initialized("u1")
        self.clock.moment = datetime(2026, 4, 1, 8, 0, 0)
        self.store.remember("u1", "Work", "Acme")
        self.assertIn("*Last updated: 2026-04-01*", self._read("u1", "about.md"))

    def test_recall_searches_preferences_and_skips_placeholders(self) -> None:
        self.store.ensure_initialized("u1")
        self.assertIsNone(self.store.recall("u1", "Name"))
        self.store.remember("u1", "Language", "English", MemoryFile.PREFERENCES)
        fact = self.store.recall("u1", "language")
        assert fact is not None
        self.assertEqual(fact.file, MemoryFile.PREFERENCES)

    def test_recall_escapes_regex_characters(self) -> None:
        self.store.remember("u1", "C++ level", "expert")
        fact = self.store.recall("u1", "C++ level")
        assert fact is not None
        self.assertEqual(fact.value, "expert")
        self.assertIsNone(self.store.recall("u1", "C.. level"))

    def test_forget_removes_and_reports_missing(self) -> None:
        self.store.remember("u1", "Work", "Acme")
        self.assertIn("Forgot", self.store.forget("u1", "work"))
        self.assertIsNone(self.store.recall("u1", "Work"))
        self.assertIn("No memory found", self.store.forget("u1", "Work"))

    def test_forget_ignores_empty_placeholders(self) -> None:
        self.assertEqual(self.store.forget("u1", "Name"), "No memory found for: Name")
        about = (self.store.memory_dir("u1") / "about.md").read_text(encoding="utf-8")
        self.assertIn("- **Name**:", about)

    def test_forget_after_remember_with_other_casing(self) -> None:
        self.store.remember("u1", "name", "Ana")
        self.assertEqual(self.store.forget("u1", "name"), "Forgot: name from about.md")
        self.assertIsNone(self.store.recall("u1", "name"))
        about = (self.store.memory_dir("u1") / "about.md").read_text(encoding="utf-8")
        self.assertIn("- **Name**:", about)

    def test_forget_clears_the_key_from_every_file(self) -> None:
        self.store.remember("u1", "Tone", "formal")
        self.store.remember("u1", "Tone", "casual", MemoryFile.PREFERENCES)
        self.assertEqual(
            self.store.forget("u1", "tone"),
            "Forgot: tone from about.md, preferences.md",
        )
        self.assertIsNone(self.store.recall("u1", "Tone"))

    def test_invalid_key_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.store.remember("u1", "", "x")
        with self.assertRaises(ValueError):
            self.store.remember("u1", "bad\nkey", "x")

    def test_invalid_user_id_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.store.memory_dir("../etc")

    def test_journal_appends_time_stamped_entries(self) -> None:
        self.store.add_journal_entry("u1", "Went running.")
        self.clock.moment = datetime(2026, 3, 14, 18, 5, 9)
        self.store.add_journal_entry("u1", "Finished the report.")
        journal = self.store.get_journal_entry("u1")
        assert journal is not None
        self.assertTrue(journal.startswith("# Journal - 2026-03-14"))
        self.assertEqual(journal.count("# Journal - "), 1)
        self.assertIn("## 09:30:00\n\nWent running.", journal)
        self.assertIn("## 18:05:09\n\nFinished the report.", journal)
        self.assertLess(journal.index("Went running."), journal.index("Finished the report."))

    def test_journal_rejects_bad_dates(self) -> None:
        with self.assertRaises(ValueError):
            self.store.add_journal_entry("u1", "x", date="14/03/2026")
        with self.assertRaises(ValueError):
            self.store.get_journal_entry("u1", date="2026-02-30")

    def test_notes_overwrite_and_share_slug(self) -> None:
        self.store.add_note("u1", "My Trip", "Paris in May")
        self.store.add_note("u1", "my trip", "Rome in June")
        self.assertEqual(self.store.list_notes("u1"), ["my-trip"])
        note = self.store.get_note("u1", "My Trip")
        assert note is not None
        self.assertIn("Rome in June", note)
        self.assertNotIn("Paris", note)
        self.assertTrue(self.store.delete_note("u1", "MY TRIP"))
        self.assertFalse(self.store.delete_note("u1", "MY TRIP"))

    def test_slug_replaces_every_disallowed_character(self) -> None:
        self.assertEqual(markdown.slugify("Café & Co."), "caf----co-")

    def test_empty_slug_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.store.add_note("u1", "   ", "content")

    def test_recent_notes_newest_first(self) -> None:
        for idx, topic in enumerate(["Alpha", "Beta", "Gamma"]):
            self.store.add_note("u1", topic, "body")
            path = self.store.memory_dir("u1") / "notes" / f"{topic.lower()}.md"
            os.utime(path, (1000 + idx, 1000 + idx))
        self.assertEqual(self.store.recent_notes("u1", limit=2), ["Gamma", "Beta"])

    def test_load_long_term_memory_order_and_omissions(self) -> None:
        self.store.ensure_initialized("u1")
        self.assertEqual(self.store.load_long_term_memory("u1"), "")

        self.store.remember("u1", "Name", "Ana")
        self.store.remember("u1", "Tone", "casual", MemoryFile.PREFERENCES)
        self.store.add_note("u1", "Groceries", "milk")
        self.store.add_journal_entry("u1", "Good day.")
        context = self.store.load_long_term_memory("u1")

        headers = [line for line in context.splitlines() if line.startswith("## ") and ":" not in line]
        self.assertEqual(headers, ["## About", "## Preferences", "## Recent Notes", "## Today's Journal"])
        self.assertIn("- **Name**: Ana", context)
        self.assertNotIn("**Location**", context)
        self.assertIn("- Groceries", context)
        self.assertIn("Good day.", context)

    def test_load_omits_sections_without_content(self) -> None:
        self.store.remember("u1", "Name", "Ana")
        context = self.store.load_long_term_memory("u1")
        self.assertTrue(context.startswith("## About"))
        self.assertNotIn("## Preferences", context)
        self.assertNotIn("## Recent Notes", context)

    def test_write_failure_raises_storage_error(self) -> None:
        self.store.ensure_initialized("u1")
        with patch.object(Path, "write_text", side_effect=OSError("disk full")):
            with self.assertRaises(StorageError):
                self.store.remember("u1", "Name", "Ana")

    def test_unreadable_record_reads_as_empty(self) -> None:
        self.store.remember("u1", "Name", "Ana")
        with patch.object(Path, "read_text", side_effect=OSError("denied")):
            self.assertIsNone(self.store.recall("u1", "Name"))
            self.assertEqual(self.store.load_long_term_memory("u1"), "")


class MigrationTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.clock = _Clock()
        self.store = LongTermMemoryStore(self.root, today=self.clock.today, now=self.clock.now)
        self.legacy_dir = self.root / "u1"
        self.legacy_dir.mkdir()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_skipped_without_legacy_data(self) -> None:
        result = self.store.migrate_if_needed("u2")
        self.assertEqual(result.status, MigrationStatus.SKIPPED)

    def test_migrates_legacy_markdown(self) -> None:
        (self.legacy_dir / "memory.md").write_text(LEGACY_MEMORY_MD, encoding="utf-8")
        result = self.store.migrate_if_needed("u1")

        self.assertEqual(result.status, MigrationStatus.MIGRATED)
        self.assertEqual(result.sources, ("memory.md",))
        self.assertFalse((self.legacy_dir / "memory.md").exists())
        self.assertTrue((self.legacy_dir / "memory.md.migrated").exists())

        self.assertEqual(self.store.recall("u1", "Name").value, "Ana")
        self.assertEqual(self.store.recall("u1", "Location").value, "Rosario")
        self.assertEqual(self.store.recall("u1", "Language").file, MemoryFile.PREFERENCES)
        self.assertIn("Works mostly from home.", self.store.get_note("u1", "Context") or "")
        self.assertIn("Call the bank on Friday.", self.store.get_note("u1", "Notes") or "")
        self.assertNotIn("important-files", self.store.list_notes("u1"))

    def test_migrated_layout_matches_fresh_layout(self) -> None:
        (self.legacy_dir / "memory.md").write_text(LEGACY_MEMORY_MD, encoding="utf-8")
        self.store.prepare("u1")

        fresh = LongTermMemoryStore(self.root, today=self.clock.today, now=self.clock.now)
        fresh.remember("u2", "Name", "Ana")
        fresh.remember("u2", "Location", "Rosario")
        fresh.remember("u2", "Language", "Spanish", MemoryFile.PREFERENCES)
        fresh.remember("u2", "Tone", "casual", MemoryFile.PREFERENCES)

        self.assertEqual(
            self.store.facts("u1", MemoryFile.ABOUT),
            fresh.facts("u2", MemoryFile.ABOUT),
        )
        self.assertEqual(
            self.store.facts("u1", MemoryFile.PREFERENCES),
            fresh.facts("u2", MemoryFile.PREFERENCES),
        )

    def test_migrates_legacy_json(self) -> None:
        payload = {
            "memory": {"Name": "Luis", "Work": "Acme"},
            "preferences": {"Language": "English"},
            "todo": {"taxes": "file before April"},
        }
        (self.legacy_dir / "memories.json").write_text(json.dumps(payload), encoding="utf-8")
        result = self.store.migrate_if_needed("u1")

        self.assertEqual(result.status, MigrationStatus.MIGRATED)
        self.assertTrue((self.legacy_dir / "memories.json.migrated").exists())
        self.assertEqual(self.store.recall("u1", "Work").value, "Acme")
        self.assertEqual(self.store.recall("u1", "Language").value, "English")
        self.assertIn("- **taxes**: file before April", self.store.get_note("u1", "Todo") or "")

    def test_migrates_json_entry_list(self) -> None:
        payload = [
            {"key": "Name", "value": "Eva", "category": "memory"},
            {"key": "Tone", "value": "formal", "category": "preferences"},
        ]
        (self.legacy_dir / "memories.json").write_text(json.dumps(payload), encoding="utf-8")
        self.assertEqual(self.store.migrate_if_needed("u1").status, MigrationStatus.MIGRATED)
        self.assertEqual(self.store.recall("u1", "Tone").value, "formal")

    def test_second_run_is_a_no_op(self) -> None:
        (self.legacy_dir / "memory.md").write_text(LEGACY_MEMORY_MD, encoding="utf-8")
        self.store.migrate_if_needed("u1")
        before = (self.store.memory_dir("u1") / "about.md").read_text(encoding="utf-8")
        result = self.store.migrate_if_needed("u1")
        self.assertEqual(result.status, MigrationStatus.SKIPPED)
        self.assertEqual((self.store.memory_dir("u1") / "about.md").read_text(encoding="utf-8"), before)

    def test_existing_new_layout_is_never_overwritten(self) -> None:
        self.store.remember("u1", "Name", "Current")
        (self.legacy_dir / "memory.md").write_text(LEGACY_MEMORY_MD, encoding="utf-8")
        result = self.store.migrate_if_needed("u1")
        self.assertEqual(result.status, MigrationStatus.SKIPPED)
        self.assertEqual(self.store.recall("u1", "Name").value, "Current")
        self.assertTrue((self.legacy_dir / "memory.md").exists())

    def test_corrupt_legacy_data_fails_and_leaves_it_untouched(self) -> None:
        (self.legacy_dir / "memories.json").write_text("{not json", encoding="utf-8")
        result = self.store.migrate_if_needed("u1")
        self.assertEqual(result.status, MigrationStatus.FAILED)
        self.assertTrue(result.reason)
        self.assertTrue((self.legacy_dir / "memories.json").exists())
        self.assertFalse((self.store.memory_dir("u1") / "about.md").exists())

        self.store.prepare("u1")
        self.assertTrue((self.store.memory_dir("u1") / "about.md").exists())

    def test_failed_rename_restores_already_renamed_sources(self) -> None:
        (self.legacy_dir / "memory.md").write_text(LEGACY_MEMORY_MD, encoding="utf-8")
        (self.legacy_dir / "memories.json").write_text(json.dumps({"memory": {"Work": "Acme"}}), encoding="utf-8")
        real_rename = Path.rename

        def rename(path: Path, target: Path) -> Path:
            if path.name == "memories.json":
                raise OSError("read-only")
            return real_rename(path, target)

        with patch.object(Path, "rename", autospec=True, side_effect=rename):
            result = self.store.migrate_if_needed("u1")

        self.assertEqual(result.status, MigrationStatus.FAILED)
        self.assertTrue((self.legacy_dir / "memory.md").exists())
        self.assertFalse((self.legacy_dir / "memory.md.migrated").exists())
        self.assertTrue((self.legacy_dir / "memories.json").exists())
        self.assertFalse((self.store.memory_dir("u1") / "about.md").exists())


if __name__ == "__main__":
    unittest.main()
