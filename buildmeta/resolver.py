"""
Build identity resolution.

Precedence (first match wins):

  build_id:   override env var(s)  ->  current UTC timestamp (YYYYMMDD-HHMMSS)
  commit_sha: CI env aliases       ->  VCS revision hash  ->  "unknown"
  branch:     CI env aliases       ->  VCS branch name    ->  "unknown"

Rules:
- Pure: the caller passes the env snapshot and the VCS provider.
- Never raises. VCS failures mean "source unavailable" and fall through.
- Blank values, unexpanded placeholders (`${...}`, `%NAME%`) and the literal
  "unknown" are treated as absent, so template syntax never reaches an artifact.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Mapping, Optional, Sequence

from buildmeta.config import Aliases
from buildmeta.errors import VcsQueryError
from buildmeta.identity import UNKNOWN, BuildIdentity, format_build_id, utc_now
from buildmeta.logging import log_event
from buildmeta.placeholders import is_usable
from buildmeta.vcs import VcsProvider

logger = logging.getLogger(__name__)

_REJECT = (UNKNOWN,)


def _first_usable(env: Mapping[str, str], names: Sequence[str]) -> Optional[tuple[str, str]]:
    for name in names:
        raw = env.get(name)
        if raw is None:
            continue
        s = str(raw).strip()
        if is_usable(s, reject=_REJECT):
            return name, s
        if s:
            log_event(
                logger,
                "buildmeta.placeholder_rejected",
                severity="WARNING",
                message=f"ignoring {name}: not a concrete value",
                variable=name,
                value=s,
            )
    return None


def resolve_build_id(
    env: Mapping[str, str],
    *,
    now: datetime,
    aliases: Aliases,
) -> tuple[str, str]:
    hit = _first_usable(env, aliases.build_id_override)
    if hit is not None:
        name, value = hit
        return value, f"env:{name}"
    return format_build_id(now), "timestamp"


def resolve_commit_sha(
    env: Mapping[str, str],
    vcs: Optional[VcsProvider],
    *,
    aliases: Aliases,
) -> tuple[str, str]:
    hit = _first_usable(env, aliases.commit_sha)
    if hit is not None:
        name, value = hit
        return value, f"env:{name}"

    if vcs is not None:
        try:
            rev = vcs.current_revision_hash()
        except VcsQueryError as e:
            log_event(logger, "buildmeta.vcs_unavailable", severity="INFO", message=str(e), query="revision")
        else:
            if is_usable(rev, reject=_REJECT):
                return rev.strip(), "vcs"

    return UNKNOWN, "fallback"


def resolve_branch(
    env: Mapping[str, str],
    vcs: Optional[VcsProvider],
    *,
    aliases: Aliases,
) -> tuple[str, str]:
    hit = _first_usable(env, aliases.branch)
    if hit is not None:
        name, value = hit
        return value, f"env:{name}"

    if vcs is not None:
        try:
            branch = vcs.current_branch()
        except VcsQueryError as e:
            log_event(logger, "buildmeta.vcs_unavailable", severity="INFO", message=str(e), query="branch")
        else:
            if is_usable(branch, reject=_REJECT):
                return branch.strip(), "vcs"

    return UNKNOWN, "fallback"


def resolve(
    env: Mapping[str, str],
    vcs: Optional[VcsProvider] = None,
    *,
    now: Optional[datetime] = None,
    aliases: Optional[Aliases] = None,
) -> BuildIdentity:
    """
    Compute the canonical identity for this build invocation.

    `now` is injectable for reproducible tests; it also becomes `built_at`.
    """
    moment = now or utc_now()
    al = aliases or Aliases()

    build_id, build_src = resolve_build_id(env, now=moment, aliases=al)
    commit_sha, commit_src = resolve_commit_sha(env, vcs, aliases=al)
    branch, branch_src = resolve_branch(env, vcs, aliases=al)

    identity = BuildIdentity(
        build_id=build_id,
        commit_sha=commit_sha,
        branch=branch,
        built_at=moment,
        sources={"build_id": build_src, "commit_sha": commit_src, "branch": branch_src},
    )
    log_event(
        logger,
        "buildmeta.resolved",
        message=f"resolved build {identity.build_id} @ {identity.commit_sha}",
        sha=identity.commit_sha,
        build_id=identity.build_id,
        commit_sha=identity.commit_sha,
        branch=identity.branch,
        sources=dict(identity.sources),
    )
    return identity
