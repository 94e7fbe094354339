"""Durable per-user memory kept as human-readable markdown.

Layout under the storage root::

    memory/{user_id}/about.md          identity facts (name, location, work)
    memory/{user_id}/preferences.md    preferences (language, tone)
    memory/{user_id}/notes/{slug}.md   one note per topic, overwritten on update
    memory/{user_id}/journal/{date}.md append-only, one time-stamped entry per write

Reads fail open (missing or unreadable records read as empty). Writes raise
StorageError so callers can report the failure.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import date as date_cls
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable

import structlog

from mate.memory import markdown

logger = structlog.get_logger()

DEFAULT_RECENT_NOTES = 5
LEGACY_MARKDOWN_NAME = "memory.md"
LEGACY_JSON_NAME = "memories.json"
MIGRATED_SUFFIX = ".migrated"

_USER_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

ABOUT_TEMPLATE = """# About Me

- **Name**:
- **Location**:
- **Work**:

---
*Last updated: {date}*
"""

PREFERENCES_TEMPLATE = """# Preferences

- **Language**:
- **Tone**:

---
*Last updated: {date}*
"""


class StorageError(RuntimeError):
    """Raised when a memory record cannot be written."""


class MemoryFile(str, Enum):
    ABOUT = "about"
    PREFERENCES = "preferences"


SEARCH_ORDER = (MemoryFile.ABOUT, MemoryFile.PREFERENCES)
_TEMPLATES = {MemoryFile.ABOUT: ABOUT_TEMPLATE, MemoryFile.PREFERENCES: PREFERENCES_TEMPLATE}


@dataclass(frozen=True)
class RecalledFact:
    key: str
    value: str
    file: MemoryFile


class MigrationStatus(str, Enum):
    MIGRATED = "migrated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class MigrationResult:
    status: MigrationStatus
    reason: str = ""
    sources: tuple[str, ...] = ()


@dataclass
class _LegacyData:
    about: dict[str, str]
    preferences: dict[str, str]
    notes: dict[str, str]


class LongTermMemoryStore:
    def __init__(
        self,
        root: Path,
        *,
        today: Callable[[], date_cls] = date_cls.today,
        now: Callable[[], datetime] = datetime.now,
        recent_notes_limit: int = DEFAULT_RECENT_NOTES,
    ) -> None:
        self._root = root
        self._today = today
        self._now = now
        self._recent_notes_limit = recent_notes_limit
        self._ready: set[str] = set()

    # -- paths -------------------------------------------------------------

    def memory_dir(self, user_id: str) -> Path:
        if not _USER_ID_RE.match(user_id):
            raise ValueError(f"Invalid user id: {user_id!r}")
        return self._root / "memory" / user_id

    def _legacy_dir(self, user_id: str) -> Path:
        self.memory_dir(user_id)
        return self._root / user_id

    def _record_path(self, user_id: str, file: MemoryFile) -> Path:
        return self.memory_dir(user_id) / f"{file.value}.md"

    def _notes_dir(self, user_id: str) -> Path:
        return self.memory_dir(user_id) / "notes"

    def _journal_dir(self, user_id: str) -> Path:
        return self.memory_dir(user_id) / "journal"

    def _note_path(self, user_id: str, topic: str) -> Path:
        slug = markdown.slugify(topic)
        if not slug.strip("-"):
            raise ValueError(f"Note topic has no usable characters: {topic!r}")
        return self._notes_dir(user_id) / f"{slug}.md"

    def _journal_path(self, user_id: str, date: str | None) -> tuple[str, Path]:
        day = date or self._today().isoformat()
        if not isinstance(day, str) or not _DATE_RE.match(day):
            raise ValueError(f"Journal date must be YYYY-MM-DD, got {day!r}")
        try:
            datetime.strptime(day, "%Y-%m-%d")
        except ValueError as exc:
            raise ValueError(f"Invalid journal date: {day!r}") from exc
        return day, self._journal_dir(user_id) / f"{day}.md"

    # -- io ----------------------------------------------------------------

    def _read(self, path: Path) -> str | None:
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning("memory_read_failed", path=str(path), error=str(exc))
            return None

    def _write(self, path: Path, content: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as exc:
            logger.error("memory_write_failed", path=str(path), error=str(exc))
            raise StorageError(f"Could not write {path.name}") from exc

    def _append(self, path: Path, content: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as fh:
                fh.write(content)
        except OSError as exc:
            logger.error("memory_write_failed", path=str(path), error=str(exc))
            raise StorageError(f"Could not write {path.name}") from exc

    def _date_string(self) -> str:
        return self._today().isoformat()

    # -- lifecycle ---------------------------------------------------------

    def ensure_initialized(self, user_id: str) -> None:
        """Create template records and empty notes/journal directories when missing."""
        for file in SEARCH_ORDER:
            path = self._record_path(user_id, file)
            if not path.exists():
                self._write(path, _TEMPLATES[file].format(date=self._date_string()))
        try:
            self._notes_dir(user_id).mkdir(parents=True, exist_ok=True)
            self._journal_dir(user_id).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError("Could not create memory directories") from exc

    def prepare(self, user_id: str) -> MigrationResult:
        """Migrate legacy records if needed, then make sure defaults exist."""
        result = self.migrate_if_needed(user_id)
        self.ensure_initialized(user_id)
        self._ready.add(user_id)
        return result

    def _ensure_ready(self, user_id: str) -> None:
        if user_id not in self._ready:
            self.prepare(user_id)

    # -- facts -------------------------------------------------------------

    def remember(
        self,
        user_id: str,
        key: str,
        value: str,
        file: MemoryFile | str = MemoryFile.ABOUT,
    ) -> str:
        target = MemoryFile(file)
        key = key.strip()
        if not key or "\n" in key or ":" in key:
            raise ValueError(f"Invalid memory key: {key!r}")
        value = " ".join(value.split())
        self._ensure_ready(user_id)
        path = self._record_path(user_id, target)
        content = self._read(path) or _TEMPLATES[target].format(date=self._date_string())
        updated = markdown.update_list_item(content, key, value)
        updated = markdown.stamp_last_updated(updated, self._date_string())
        self._write(path, updated)
        return f"Remembered in {target.value}.md: {key} = {value}"

    def recall(self, user_id: str, key: str, file: MemoryFile | str | None = None) -> RecalledFact | None:
        files = (MemoryFile(file),) if file is not None else SEARCH_ORDER
        self._ensure_ready(user_id)
        for target in files:
            content = self._read(self._record_path(user_id, target))
            if not content:
                continue
            value = markdown.find_list_item(content, key.strip())
            if value is not None:
                return RecalledFact(key=key.strip(), value=value, file=target)
        return None

    def forget(self, user_id: str, key: str, file: MemoryFile | str | None = None) -> str:
        """Remove `key` from every searched file so a later recall finds nothing."""
        files = (MemoryFile(file),) if file is not None else SEARCH_ORDER
        self._ensure_ready(user_id)
        forgotten: list[str] = []
        for target in files:
            path = self._record_path(user_id, target)
            content = self._read(path)
            if not content:
                continue
            updated, removed = markdown.remove_list_item(content, key.strip())
            if removed:
                self._write(path, markdown.stamp_last_updated(updated, self._date_string()))
                forgotten.append(f"{target.value}.md")
        if not forgotten:
            return f"No memory found for: {key}"
        return f"Forgot: {key} from {', '.join(forgotten)}"

    def facts(self, user_id: str, file: MemoryFile | str) -> dict[str, str]:
        self._ensure_ready(user_id)
        return markdown.parse_list(self._read(self._record_path(user_id, MemoryFile(file))) or "")

    # -- notes -------------------------------------------------------------

    def add_note(self, user_id: str, topic: str, content: str) -> str:
        path = self._note_path(user_id, topic)
        self._ensure_ready(user_id)
        body = f"# {topic.strip()}\n\n{content.strip()}\n\n---\n*Last updated: {self._date_string()}*\n"
        self._write(path, body)
        return f"Note saved: {topic.strip()}"

    def get_note(self, user_id: str, topic: str) -> str | None:
        path = self._note_path(user_id, topic)
        return self._read(path)

    def list_notes(self, user_id: str) -> list[str]:
        notes_dir = self._notes_dir(user_id)
        if not notes_dir.is_dir():
            return []
        return sorted(p.stem for p in notes_dir.glob("*.md"))

    def delete_note(self, user_id: str, topic: str) -> bool:
        path = self._note_path(user_id, topic)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as exc:
            raise StorageError(f"Could not delete note {path.stem}") from exc
        return True

    def recent_notes(self, user_id: str, limit: int | None = None) -> list[str]:
        """Titles of the most recently modified notes, newest first."""
        limit = self._recent_notes_limit if limit is None else limit
        notes_dir = self._notes_dir(user_id)
        if not notes_dir.is_dir() or limit <= 0:
            return []
        try:
            paths = sorted(notes_dir.glob("*.md"), key=lambda p: p.stat().st_mtime, reverse=True)
        except OSError as exc:
            logger.warning("memory_notes_scan_failed", user_id=user_id, error=str(exc))
            return []
        titles: list[str] = []
        for path in paths[:limit]:
            content = self._read(path) or ""
            titles.append(markdown.first_heading(content) or path.stem)
        return titles

    # -- journal -----------------------------------------------------------

    def add_journal_entry(self, user_id: str, content: str, date: str | None = None) -> str:
        day, path = self._journal_path(user_id, date)
        self._ensure_ready(user_id)
        chunks: list[str] = []
        if not path.exists():
            chunks.append(f"# Journal - {day}\n")
        chunks.append(f"\n## {self._now().strftime('%H:%M:%S')}\n\n{content.strip()}\n")
        self._append(path, "".join(chunks))
        return day

    def get_journal_entry(self, user_id: str, date: str | None = None) -> str | None:
        _, path = self._journal_path(user_id, date)
        return self._read(path)

    # -- prompt context ----------------------------------------------------

    def _record_body(self, user_id: str, file: MemoryFile) -> str:
        content = self._read(self._record_path(user_id, file)) or ""
        lines: list[str] = []
        for line in content.splitlines():
            stripped = line.strip()
            if stripped.startswith("# ") or stripped == "---" or markdown.LAST_UPDATED_RE.match(stripped):
                continue
            if stripped.startswith("- ") and not markdown.parse_list(stripped):
                continue
            lines.append(line)
        return "\n".join(lines).strip()

    def load_long_term_memory(self, user_id: str) -> str:
        """About, Preferences, Recent Notes (titles), Today's Journal; empty parts omitted."""
        sections: list[str] = []
        about = self._record_body(user_id, MemoryFile.ABOUT)
        if about:
            sections.append(f"## About\n{about}")
        preferences = self._record_body(user_id, MemoryFile.PREFERENCES)
        if preferences:
            sections.append(f"## Preferences\n{preferences}")
        titles = self.recent_notes(user_id)
        if titles:
            sections.append("## Recent Notes\n" + "\n".join(f"- {t}" for t in titles))
        journal = self.get_journal_entry(user_id)
        if journal:
            body = "\n".join(l for l in journal.splitlines() if not l.startswith("# Journal")).strip()
            if body:
                sections.append(f"## Today's Journal\n{body}")
        return "\n\n".join(sections)

    # -- migration ---------------------------------------------------------

    def migrate_if_needed(self, user_id: str) -> MigrationResult:
        """One-time import of legacy single-file and JSON memories.

        Gated on the new about record: once it exists this is a no-op. Legacy
        files are renamed with a ``.migrated`` suffix, never deleted. On any
        failure nothing new is left behind and the legacy files stay put.
        """
        if self._record_path(user_id, MemoryFile.ABOUT).exists():
            return MigrationResult(MigrationStatus.SKIPPED, "already in current format")
        legacy_dir = self._legacy_dir(user_id)
        sources = [
            p
            for p in (legacy_dir / LEGACY_MARKDOWN_NAME, legacy_dir / LEGACY_JSON_NAME)
            if p.is_file()
        ]
        if not sources:
            return MigrationResult(MigrationStatus.SKIPPED, "no legacy memory")

        names = tuple(p.name for p in sources)
        created: list[Path] = []
        renamed: list[tuple[Path, Path]] = []
        try:
            data = _LegacyData(about={}, preferences={}, notes={})
            for path in sources:
                text = path.read_text(encoding="utf-8")
                if path.name == LEGACY_MARKDOWN_NAME:
                    _parse_legacy_markdown(text, data)
                else:
                    _parse_legacy_json(text, data)

            for file, values in ((MemoryFile.ABOUT, data.about), (MemoryFile.PREFERENCES, data.preferences)):
                content = _TEMPLATES[file].format(date=self._date_string())
                for key, value in values.items():
                    content = markdown.update_list_item(content, key, " ".join(value.split()))
                path = self._record_path(user_id, file)
                self._write(path, content)
                created.append(path)
            for topic, body in data.notes.items():
                path = self._note_path(user_id, topic)
                self._write(
                    path,
                    f"# {topic}\n\n{body}\n\n---\n*Last updated: {self._date_string()}*\n",
                )
                created.append(path)
            for path in sources:
                target = path.with_name(path.name + MIGRATED_SUFFIX)
                path.rename(target)
                renamed.append((path, target))
        except (OSError, ValueError, StorageError) as exc:
            for original, target in reversed(renamed):
                target.rename(original)
            for path in created:
                path.unlink(missing_ok=True)
            logger.warning("memory_migration_failed", user_id=user_id, sources=names, error=str(exc))
            return MigrationResult(MigrationStatus.FAILED, str(exc), names)

        logger.info(
            "memory_migrated",
            user_id=user_id,
            sources=names,
            about=len(data.about),
            preferences=len(data.preferences),
            notes=len(data.notes),
        )
        return MigrationResult(MigrationStatus.MIGRATED, "", names)


def _split_list_and_text(section: str) -> tuple[dict[str, str], str]:
    items = markdown.parse_list(section)
    text_lines = [
        line
        for line in section.splitlines()
        if line.strip() and not markdown.parse_list(line.strip())
    ]
    return items, "\n".join(text_lines).strip()


def _parse_legacy_markdown(text: str, data: _LegacyData) -> None:
    sections = markdown.parse_sections(markdown.strip_comments(text))
    for title, body in sections.items():
        body = markdown.strip_comments(body)
        if not body:
            continue
        items, free_text = _split_list_and_text(body)
        lowered = title.strip().lower()
        if lowered == "preferences":
            data.preferences.update(items)
            if free_text:
                data.notes["Preferences"] = free_text
        elif lowered == "context":
            data.about.update(items)
            if free_text:
                data.notes["Context"] = free_text
        elif lowered == "long-term memory":
            if free_text:
                data.notes["Legacy Memory"] = free_text
        else:
            data.notes[title.strip()] = body


def _iter_legacy_json(raw: Any) -> list[tuple[str, str, str]]:
    entries: list[tuple[str, str, str]] = []
    if isinstance(raw, dict):
        for category, items in raw.items():
            if isinstance(items, dict):
                entries.extend((str(category), str(k), str(v)) for k, v in items.items())
            elif isinstance(items, list):
                for item in items:
                    if not isinstance(item, dict) or "key" not in item:
                        raise ValueError(f"Unrecognised legacy entry in {category!r}")
                    entries.append((str(category), str(item["key"]), str(item.get("value", ""))))
            else:
                entries.append(("memory", str(category), str(items)))
    elif isinstance(raw, list):
        for item in raw:
            if not isinstance(item, dict) or "key" not in item:
                raise ValueError("Unrecognised legacy entry")
            entries.append(
                (str(item.get("category", "memory")), str(item["key"]), str(item.get("value", "")))
            )
    else:
        raise ValueError("Legacy memories must be an object or a list")
    return entries


def _parse_legacy_json(text: str, data: _LegacyData) -> None:
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Legacy memories are not valid JSON: {exc}") from exc
    by_category: dict[str, list[str]] = {}
    for category, key, value in _iter_legacy_json(raw):
        key = key.strip().replace(":", " ")
        if not key or not value.strip():
            continue
        lowered = category.strip().lower()
        if lowered in {"memory", "about"}:
            data.about[key] = value
        elif lowered in {"preferences", "preference"}:
            data.preferences[key] = value
        else:
            by_category.setdefault(category.strip() or "random", []).append(
                markdown.format_list_item(key, " ".join(value.split()))
            )
    for category, lines in by_category.items():
        data.notes[category.title()] = "\n".join(lines)
