from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

import pytest

from buildmeta.config import Aliases
from buildmeta.errors import VcsQueryError
from buildmeta.logging import JsonLogFormatter


FIXED_NOW = datetime(2025, 8, 17, 12, 0, 0, tzinfo=timezone.utc)
FIXED_BUILD_ID = "20250817-120000"

FULL_SHA = "622a34a1f99d5ce0dbb5ea1d0186d4c51ff75dde"

INDEX_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <meta name="build-id" content="%REACT_APP_BUILD_ID%">
    <title>Fixlo</title>
  </head>
  <body>
    <div id="root"></div>
  </body>
</html>
"""


class FakeVcs:
    """In-memory VcsProvider. `None` means the query fails like a non-repo checkout."""

    def __init__(self, revision: Optional[str] = None, branch: Optional[str] = None) -> None:
        self.revision = revision
        self.branch = branch
        self.calls: list[str] = []

    def current_revision_hash(self) -> str:
        self.calls.append("revision")
        if self.revision is None:
            raise VcsQueryError("fatal: not a git repository")
        return self.revision

    def current_branch(self) -> str:
        self.calls.append("branch")
        if self.branch is None:
            raise VcsQueryError("detached HEAD; no branch name")
        return self.branch


@pytest.fixture
def fake_vcs():
    return FakeVcs


@pytest.fixture(autouse=True)
def _isolated_build_env(monkeypatch):
    """CI runners export GITHUB_SHA & co; tests must only see what they set."""
    al = Aliases()
    for name in (*al.build_id_override, *al.commit_sha, *al.branch):
        monkeypatch.delenv(name, raising=False)
    for name in ("BUILDMETA_CONFIG", "REACT_APP_BUILD_ID", "REACT_APP_COMMIT_SHA"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _restore_root_logging():
    """The CLI installs a JSON handler on the root logger; drop it after each test."""
    root = logging.getLogger()
    before = set(root.handlers)
    level = root.level
    yield
    root.handlers = [h for h in root.handlers if h in before or not isinstance(h.formatter, JsonLogFormatter)]
    root.setLevel(level)
