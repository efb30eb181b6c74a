"""
BuildIdentity: the one value every build artifact carries.

Resolved once per build invocation, then only read. All encodings (env file,
generated module, HTML, version.json) are projections of the same instance.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from pydantic import BaseModel, Field, field_validator
from pydantic.config import ConfigDict

from buildmeta.placeholders import is_placeholder


UNKNOWN = "unknown"

# Canonical human-facing build id: compact UTC timestamp.
BUILD_ID_FORMAT = "%Y%m%d-%H%M%S"
BUILD_ID_PATTERN = r"^\d{8}-\d{6}$"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        # Naive datetimes are assumed to already be UTC.
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_build_id(moment: datetime) -> str:
    return _as_utc(moment).strftime(BUILD_ID_FORMAT)


def iso_utc(moment: datetime) -> str:
    return _as_utc(moment).isoformat(timespec="seconds").replace("+00:00", "Z")


class BuildIdentity(BaseModel):
    """
    Canonical `(build_id, commit_sha)` pair plus supporting metadata.

    `sources` records which tier produced each field (e.g. `{"build_id": "timestamp",
    "commit_sha": "env:GITHUB_SHA"}`) for the build log; it is never stamped.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    build_id: str = Field(..., min_length=1)
    commit_sha: str = Field(default=UNKNOWN, min_length=1)
    branch: str = Field(default=UNKNOWN, min_length=1)
    built_at: datetime = Field(default_factory=utc_now)
    sources: Dict[str, str] = Field(default_factory=dict)

    @field_validator("build_id", "commit_sha", "branch", mode="before")
    @classmethod
    def _concrete(cls, v: Any) -> str:
        s = "" if v is None else str(v).strip()
        if not s:
            raise ValueError("must be a non-empty string")
        if is_placeholder(s):
            raise ValueError(f"unresolved template placeholder: {s!r}")
        return s

    @field_validator("built_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @property
    def build_time_iso(self) -> str:
        return iso_utc(self.built_at)

    def as_payload(self) -> dict[str, str]:
        """Client-facing object literal (camelCase, the shape the front end reads)."""
        return {
            "buildId": self.build_id,
            "commitSha": self.commit_sha,
            "branch": self.branch,
            "buildTime": self.build_time_iso,
        }

    def short_sha(self, n: int = 7) -> str:
        if self.commit_sha == UNKNOWN:
            return UNKNOWN
        return self.commit_sha[:n]
