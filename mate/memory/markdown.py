"""Markdown helpers for memory records that humans read and edit.

Facts are list items of the form ``- **Key**: Value`` (``- Key: Value`` is
also accepted when reading).
"""

from __future__ import annotations

import re

LAST_UPDATED_RE = re.compile(r"^\*Last updated: .*\*$", re.MULTILINE)
_HEADER_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*$")
_LIST_ITEM_RE = re.compile(r"^-\s+(?:\*\*)?([^*:]+?)(?:\*\*)?\s*:\s*(.*)$")
_SLUG_RE = re.compile(r"[^a-z0-9-]")


def slugify(topic: str) -> str:
    """Lowercase, every char outside [a-z0-9-] becomes a hyphen."""
    return _SLUG_RE.sub("-", topic.strip().lower())


def format_list_item(key: str, value: str) -> str:
    return f"- **{key}**: {value}"


def _item_pattern(key: str, *, ignore_case: bool) -> re.Pattern[str]:
    flags = re.IGNORECASE if ignore_case else 0
    return re.compile(rf"^-\s+(?:\*\*)?{re.escape(key)}(?:\*\*)?\s*:\s*(.*)$", flags)


def find_list_item(content: str, key: str, *, ignore_case: bool = True) -> str | None:
    """Return the non-empty value stored under `key`, or None."""
    pattern = _item_pattern(key, ignore_case=ignore_case)
    for line in content.splitlines():
        match = pattern.match(line)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


def update_list_item(content: str, key: str, value: str) -> str:
    """Replace the line for `key` (exact, case-sensitive) or insert a new one.

    New items go after the last existing list item, or before the
    ``---`` footer when the record has no items yet.
    """
    pattern = _item_pattern(key, ignore_case=False)
    lines = content.split("\n")
    new_line = format_list_item(key, value)
    for idx, line in enumerate(lines):
        if pattern.match(line):
            lines[idx] = new_line
            return "\n".join(lines)

    last_item = max((i for i, line in enumerate(lines) if line.startswith("- ")), default=None)
    if last_item is not None:
        lines.insert(last_item + 1, new_line)
        return "\n".join(lines)

    if "---" in lines:
        footer = lines.index("---")
        lines[footer:footer] = [new_line, ""]
        return "\n".join(lines)

    if lines and lines[-1] == "":
        lines.insert(len(lines) - 1, new_line)
    else:
        lines.append(new_line)
    return "\n".join(lines)


def remove_list_item(content: str, key: str) -> tuple[str, bool]:
    """Drop every line for `key` (any case) that holds a value.

    Empty placeholders are left alone, matching `find_list_item`.
    """
    pattern = _item_pattern(key, ignore_case=True)
    kept: list[str] = []
    removed = False
    for line in content.split("\n"):
        match = pattern.match(line)
        if match and match.group(1).strip():
            removed = True
            continue
        kept.append(line)
    return "\n".join(kept), removed


def parse_list(content: str) -> dict[str, str]:
    """Key/value pairs of every list item with a non-empty value."""
    out: dict[str, str] = {}
    for line in content.splitlines():
        match = _LIST_ITEM_RE.match(line.strip())
        if match and match.group(2).strip():
            out[match.group(1).strip()] = match.group(2).strip()
    return out


def parse_sections(content: str) -> dict[str, str]:
    """Map of header title to the text below it, up to the next header."""
    sections: dict[str, str] = {}
    current: str | None = None
    buffer: list[str] = []
    for line in content.splitlines():
        match = _HEADER_RE.match(line)
        if match:
            if current is not None:
                sections[current] = "\n".join(buffer).strip()
            current = match.group(2)
            buffer = []
        else:
            buffer.append(line)
    if current is not None:
        sections[current] = "\n".join(buffer).strip()
    return sections


def strip_comments(text: str) -> str:
    return re.sub(r"<!--.*?-->", "", text, flags=re.DOTALL).strip()


def stamp_last_updated(content: str, date_str: str) -> str:
    stamp = f"*Last updated: {date_str}*"
    if LAST_UPDATED_RE.search(content):
        return LAST_UPDATED_RE.sub(lambda _: stamp, content, count=1)
    return content.rstrip("\n") + f"\n\n---\n{stamp}\n"


def first_heading(content: str) -> str | None:
    for line in content.splitlines():
        match = _HEADER_RE.match(line)
        if match:
            return match.group(2)
    return None
