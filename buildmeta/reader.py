"""
Consumer side: read stamped metadata back without re-resolving it.

Used by the about/version display and by tests that round-trip a stamped module.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Mapping, Optional

from dotenv import dotenv_values

from buildmeta.config import EnvKeys
from buildmeta.identity import UNKNOWN
from buildmeta.logging import log_event

logger = logging.getLogger(__name__)

DEV_BUILD_ID = "dev"

_RE_CONST = r"^\s*(?:export\s+const\s+)?{name}\s*=\s*(\"(?:[^\"\\]|\\.)*\")\s*;?\s*$"
RE_BUILD_ID = re.compile(_RE_CONST.format(name="BUILD_ID"), re.MULTILINE)
RE_COMMIT_SHA = re.compile(_RE_CONST.format(name="COMMIT_SHA"), re.MULTILINE)


def parse_source_module(text: str) -> tuple[Optional[str], Optional[str]]:
    def _const(rx: re.Pattern[str]) -> Optional[str]:
        m = rx.search(text)
        if m is None:
            return None
        try:
            return json.loads(m.group(1))
        except json.JSONDecodeError:
            return None

    return _const(RE_BUILD_ID), _const(RE_COMMIT_SHA)


def read_source_module(path: Path | str) -> tuple[Optional[str], Optional[str]]:
    """Return `(build_id, commit_sha)` from a generated js/py module."""
    return parse_source_module(Path(path).read_text(encoding="utf-8"))


def read_env_file(path: Path | str) -> dict[str, Optional[str]]:
    return dict(dotenv_values(str(path)))


def describe_build(
    module_path: Optional[Path | str] = None,
    env: Optional[Mapping[str, str]] = None,
    *,
    keys: Optional[EnvKeys] = None,
) -> str:
    """
    The one-line version string a diagnostics/about page renders.

    Prefers the generated module; falls back to the environment, then to "dev".
    An unreadable module counts as missing.
    """
    k = keys or EnvKeys()
    e: Mapping[str, str] = os.environ if env is None else env

    build_id: Optional[str] = None
    commit_sha: Optional[str] = None
    if module_path is not None and Path(module_path).is_file():
        try:
            build_id, commit_sha = read_source_module(module_path)
        except (OSError, UnicodeDecodeError) as ex:
            log_event(
                logger,
                "buildmeta.module_unreadable",
                severity="WARNING",
                message=f"cannot read generated module {module_path}: {ex}",
                path=str(module_path),
            )

    build_id = build_id or (e.get(k.build_id) or "").strip() or DEV_BUILD_ID
    commit_sha = commit_sha or (e.get(k.commit_sha) or "").strip() or UNKNOWN
    return f"Build: {build_id} | Commit: {commit_sha}"
