from __future__ import annotations

from pathlib import Path


class BuildMetaError(Exception):
    """Base class for every error raised by a build step."""


class ConfigError(BuildMetaError):
    pass


class VcsQueryError(BuildMetaError):
    """The version-control source is unavailable (not a repo, no git, detached HEAD, ...)."""


class BannerFormatError(BuildMetaError):
    pass


class StampError(BuildMetaError):
    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = str(path)
        self.reason = reason
        super().__init__(f"failed to write {self.path}: {reason}")
