"""Regex extraction of user facts from chat text.

Used after a successful reply as a fallback for when the model did not call
the memory tools itself.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from mate.memory.longterm import MemoryFile

MIN_VALUE_LEN = 2
MAX_VALUE_LEN = 100
_UNTIL_PUNCT = r"(.+?)(?:\.|,|$)"
_ES_WORD = r"([a-záéíóúñ]+)"
_ES_PLACE = r"([a-záéíóúñ\s,]+)"


@dataclass(frozen=True)
class ExtractedInfo:
    key: str
    value: str
    file: MemoryFile


@dataclass(frozen=True)
class _Pattern:
    regex: re.Pattern[str]
    key: str
    file: MemoryFile


def _p(pattern: str, key: str, file: MemoryFile = MemoryFile.ABOUT) -> _Pattern:
    return _Pattern(re.compile(pattern, re.IGNORECASE), key, file)


# More specific patterns first.
PATTERNS: tuple[_Pattern, ...] = (
    _p(rf"me llamo\s+{_ES_WORD}", "Name"),
    _p(rf"mi nombre es\s+{_ES_WORD}", "Name"),
    _p(rf"puedes llamarme\s+{_ES_WORD}", "Name"),
    _p(rf"llámame\s+{_ES_WORD}", "Name"),
    _p(rf"vivo en\s+{_ES_PLACE}", "Location"),
    _p(rf"soy de\s+{_ES_PLACE}", "Location"),
    _p(rf"estoy en\s+{_ES_PLACE}", "Location"),
    _p(rf"trabajo en\s+{_UNTIL_PUNCT}", "Work"),
    _p(rf"trabajo como\s+{_UNTIL_PUNCT}", "Occupation"),
    _p(
        r"soy\s+(ingeniero|doctor|profesor|abogado|diseñador|programador|desarrollador)(?:\s|$)",
        "Occupation",
    ),
    _p(rf"prefiero\s+{_UNTIL_PUNCT}", "Preference", MemoryFile.PREFERENCES),
    _p(rf"me gusta\s+{_UNTIL_PUNCT}", "Likes", MemoryFile.PREFERENCES),
    _p(r"my name is\s+(\w+)", "Name"),
    _p(r"call me\s+(\w+)", "Name"),
    _p(rf"i live in\s+{_UNTIL_PUNCT}", "Location"),
    _p(rf"i'm from\s+{_UNTIL_PUNCT}", "Location"),
    _p(rf"i am from\s+{_UNTIL_PUNCT}", "Location"),
    _p(rf"i work at\s+{_UNTIL_PUNCT}", "Work"),
    _p(rf"i work as\s+{_UNTIL_PUNCT}", "Occupation"),
    _p(
        r"i am an?\s+(developer|engineer|doctor|teacher|lawyer|designer|programmer)(?:\s|$)",
        "Occupation",
    ),
    _p(rf"i prefer\s+{_UNTIL_PUNCT}", "Preference", MemoryFile.PREFERENCES),
    _p(rf"i like\s+{_UNTIL_PUNCT}", "Likes", MemoryFile.PREFERENCES),
)


def _match(pattern: _Pattern, text: str) -> ExtractedInfo | None:
    match = pattern.regex.search(text)
    if not match or not match.group(1):
        return None
    value = match.group(1).strip().rstrip(",").strip()
    if not MIN_VALUE_LEN <= len(value) <= MAX_VALUE_LEN:
        return None
    return ExtractedInfo(key=pattern.key, value=value, file=pattern.file)


def extract_user_info(text: str) -> ExtractedInfo | None:
    """First fact found, or None."""
    for pattern in PATTERNS:
        info = _match(pattern, text)
        if info is not None:
            return info
    return None


def extract_all_user_info(text: str) -> list[ExtractedInfo]:
    """At most one fact per key, first matching pattern wins."""
    results: list[ExtractedInfo] = []
    seen: set[str] = set()
    for pattern in PATTERNS:
        if pattern.key in seen:
            continue
        info = _match(pattern, text)
        if info is not None:
            results.append(info)
            seen.add(info.key)
    return results


def should_remember(text: str) -> bool:
    return any(pattern.regex.search(text) for pattern in PATTERNS)
