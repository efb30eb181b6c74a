"""
Template placeholder detection.

A value "still carries template syntax" when a substitution step upstream of us
did not run: `${VERCEL_GIT_COMMIT_SHA}`, `%REACT_APP_BUILD_ID%`, `{{ build_id }}`.
Such values must never be stamped and must never survive into shipped HTML.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional


# Document scan: named tokens only, so CSS like `width: 100%` or JS template
# literals over lowercase identifiers do not trip the check.
RE_DOLLAR_BRACE = re.compile(r"\$\{[A-Z_][A-Z0-9_]*\}")
RE_PERCENT_NAME = re.compile(r"%[A-Z_][A-Z0-9_]*%")
RE_MUSTACHE = re.compile(r"\{\{\s*[A-Za-z_][A-Za-z0-9_.]*\s*\}\}")

_DOCUMENT_PATTERNS = (RE_DOLLAR_BRACE, RE_PERCENT_NAME, RE_MUSTACHE)


@dataclass(frozen=True)
class PlaceholderMatch:
    token: str
    line: int
    snippet: str


def is_placeholder(value: Optional[str]) -> bool:
    """
    True when a single env/config value is an unexpanded template marker.

    Values are stricter than documents: any `${`, `{{` or `%` means the value
    was never substituted (no real build id or revision hash contains them).
    """
    if value is None:
        return False
    s = str(value)
    return "${" in s or "{{" in s or "%" in s


def is_usable(value: Optional[str], *, reject: tuple[str, ...] = ()) -> bool:
    if value is None:
        return False
    s = str(value).strip()
    if not s:
        return False
    if is_placeholder(s):
        return False
    return s.lower() not in {r.lower() for r in reject}


def find_placeholders(text: str) -> list[PlaceholderMatch]:
    found: list[PlaceholderMatch] = []
    for i, line in enumerate(text.splitlines(), start=1):
        hits: list[tuple[int, str]] = []
        for rx in _DOCUMENT_PATTERNS:
            hits.extend((m.start(), m.group(0)) for m in rx.finditer(line))
        for _, token in sorted(hits):
            found.append(PlaceholderMatch(token=token, line=i, snippet=_snippet(line)))
    return found


def _snippet(line: str, *, max_len: int = 160) -> str:
    s = line.strip()
    if len(s) > max_len:
        s = s[: max_len - 1] + "…"
    return s
