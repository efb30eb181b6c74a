"""
Version-control queries behind a small provider interface.

The resolver only ever sees `VcsProvider`; tests pass a fake, `--no-vcs` passes
`NullVcs`, and real builds use `GitVcs`.
"""

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from buildmeta.errors import VcsQueryError


RE_REVISION = re.compile(r"^[0-9a-f]{7,64}$")


@runtime_checkable
class VcsProvider(Protocol):
    def current_revision_hash(self) -> str: ...

    def current_branch(self) -> str: ...


class NullVcs:
    """No repository available (explicit opt-out)."""

    def current_revision_hash(self) -> str:
        raise VcsQueryError("version control disabled")

    def current_branch(self) -> str:
        raise VcsQueryError("version control disabled")


class GitVcs:
    def __init__(self, cwd: Optional[Path | str] = None, *, timeout: float = 5.0) -> None:
        self.cwd = str(cwd) if cwd is not None else None
        self.timeout = timeout

    def _git(self, *args: str) -> str:
        try:
            res = subprocess.run(
                ["git", *args],
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise VcsQueryError("git executable not found") from e
        except subprocess.TimeoutExpired as e:
            raise VcsQueryError(f"git {' '.join(args)} timed out after {self.timeout}s") from e
        except OSError as e:
            raise VcsQueryError(f"git {' '.join(args)} failed: {e}") from e

        if res.returncode != 0:
            detail = (res.stderr or "").strip().splitlines()
            raise VcsQueryError(f"git {' '.join(args)} exited {res.returncode}: {detail[0] if detail else 'no output'}")
        return (res.stdout or "").strip()

    def current_revision_hash(self) -> str:
        out = self._git("rev-parse", "HEAD").lower()
        if not RE_REVISION.match(out):
            raise VcsQueryError(f"unexpected revision output: {out!r}")
        return out

    def current_branch(self) -> str:
        out = self._git("rev-parse", "--abbrev-ref", "HEAD")
        # Detached checkouts (typical in CI) report the literal "HEAD".
        if not out or out == "HEAD":
            raise VcsQueryError("detached HEAD; no branch name")
        return out
