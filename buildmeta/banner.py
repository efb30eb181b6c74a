"""
Deploy-log banner parsing.

Deploy logs print the identity as:

    FIXLO BUILD {BUILD_ID: '2025-08-16T22:19:50', COMMIT_SHA: '622a34a1...'}

Re-stamping from a banner must apply the same rules as the resolver: a build
id of "unknown" or a placeholder becomes a fresh timestamp; a placeholder
commit becomes "unknown" (a literal "unknown" commit is kept as-is).
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Optional

from buildmeta.errors import BannerFormatError
from buildmeta.identity import UNKNOWN, BuildIdentity, format_build_id, utc_now
from buildmeta.logging import log_event
from buildmeta.placeholders import is_usable

logger = logging.getLogger(__name__)

BANNER_PREFIX = "FIXLO BUILD"

RE_BANNER = re.compile(
    r"FIXLO BUILD \{BUILD_ID: '(?P<build_id>[^']*)', COMMIT_SHA: '(?P<commit_sha>[^']*)'\}"
)


def format_build_banner(identity: BuildIdentity) -> str:
    return f"{BANNER_PREFIX} {{BUILD_ID: '{identity.build_id}', COMMIT_SHA: '{identity.commit_sha}'}}"


def parse_build_banner(text: str, *, now: Optional[datetime] = None) -> BuildIdentity:
    m = RE_BANNER.search(text or "")
    if not m:
        raise BannerFormatError(
            "Invalid FIXLO BUILD format. Expected: FIXLO BUILD {BUILD_ID: '...', COMMIT_SHA: '...'}"
        )

    moment = now or utc_now()
    build_id = m.group("build_id")
    commit_sha = m.group("commit_sha")
    sources = {"build_id": "banner", "commit_sha": "banner", "branch": "fallback"}

    if not is_usable(build_id, reject=(UNKNOWN,)):
        log_event(
            logger,
            "buildmeta.placeholder_rejected",
            severity="WARNING",
            message="BUILD_ID was invalid/placeholder; using timestamp",
            field="BUILD_ID",
            value=build_id,
        )
        build_id = format_build_id(moment)
        sources["build_id"] = "timestamp"

    if not is_usable(commit_sha):
        log_event(
            logger,
            "buildmeta.placeholder_rejected",
            severity="WARNING",
            message="COMMIT_SHA was placeholder/empty; using unknown",
            field="COMMIT_SHA",
            value=commit_sha,
        )
        commit_sha = UNKNOWN
        sources["commit_sha"] = "fallback"

    return BuildIdentity(
        build_id=build_id.strip(),
        commit_sha=commit_sha.strip(),
        built_at=moment,
        sources=sources,
    )
