"""
Build metadata configuration.

Loaded from `buildmeta.yaml` in the build root (or the file named by
BUILDMETA_CONFIG). Every field has a default matching the client layout
(`public/index.html`, `src/buildInfo.js`, `.env.production.local`), so a config
file is optional.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, List, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic.config import ConfigDict

from buildmeta.errors import ConfigError
from buildmeta.identity import BUILD_ID_PATTERN

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "buildmeta.yaml"
CONFIG_ENV_VAR = "BUILDMETA_CONFIG"


class EnvKeys(BaseModel):
    """Keys written to the env cascade file (read by the bundler's env loader)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    build_id: str = "REACT_APP_BUILD_ID"
    commit_sha: str = "REACT_APP_COMMIT_SHA"
    build_time: Optional[str] = "REACT_APP_BUILD_TIME"
    branch: Optional[str] = "REACT_APP_GIT_BRANCH"


class Aliases(BaseModel):
    """Env var names consulted by the resolver, in precedence order."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    build_id_override: List[str] = Field(default_factory=lambda: ["BUILD_ID_OVERRIDE", "RELEASE_BUILD_ID"])
    commit_sha: List[str] = Field(
        default_factory=lambda: [
            "COMMIT_SHA",
            "GIT_SHA",
            "VERCEL_GIT_COMMIT_SHA",
            "GITHUB_SHA",
            "RENDER_GIT_COMMIT",
            "CF_PAGES_COMMIT_SHA",
            "SOURCE_VERSION",
        ]
    )
    branch: List[str] = Field(
        default_factory=lambda: ["GIT_BRANCH", "VERCEL_GIT_COMMIT_REF", "GITHUB_REF_NAME", "BRANCH"]
    )


class BuildMetaConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    # Stamper targets (relative to the build root). Empty/None disables a target.
    env_file: Optional[str] = ".env.production.local"
    env_keys: EnvKeys = Field(default_factory=EnvKeys)
    module_path: Optional[str] = "src/buildInfo.js"
    module_flavor: Literal["js", "py"] = "js"
    html_documents: List[str] = Field(default_factory=lambda: ["public/index.html"])
    version_json: List[str] = Field(default_factory=lambda: ["public/version.json"])

    # Resolver
    aliases: Aliases = Field(default_factory=Aliases)
    use_vcs: bool = True
    vcs_timeout_s: float = Field(default=5.0, gt=0)

    # Verifier
    build_id_pattern: str = BUILD_ID_PATTERN
    entry_documents: List[str] = Field(default_factory=lambda: ["index.html"])

    @field_validator("build_id_pattern")
    @classmethod
    def _compiles(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"invalid regex: {e}") from e
        return v

    @field_validator("module_flavor", mode="before")
    @classmethod
    def _normalize_flavor(cls, v: Any) -> Any:
        return str(v).strip().lower() if v is not None else v


def resolve_path(root: Path, rel: str) -> Path:
    p = Path(rel)
    return p if p.is_absolute() else root / p


def _read_config_file(p: Path) -> dict[str, Any]:
    raw = p.read_text(encoding="utf-8")
    if not raw.strip():
        return {}
    if p.suffix.lower() == ".json":
        data = json.loads(raw)
    else:
        data = yaml.safe_load(raw)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{p}: top-level config must be a mapping, got {type(data).__name__}")
    return data


def _config_path(root: Path, explicit: Optional[Path | str], env: Mapping[str, str]) -> Optional[Path]:
    if explicit:
        return resolve_path(root, str(explicit))
    from_env = (env.get(CONFIG_ENV_VAR) or "").strip()
    if from_env:
        return resolve_path(root, from_env)
    default = root / DEFAULT_CONFIG_NAME
    return default if default.exists() else None


def load_config(
    root: Path | str = ".",
    path: Optional[Path | str] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
) -> BuildMetaConfig:
    """
    Load config for a build root. No file means all defaults.

    An explicitly requested file (argument or BUILDMETA_CONFIG) must exist.
    """
    root = Path(root)
    e: Mapping[str, str] = os.environ if env is None else env
    p = _config_path(root, path, e)
    if p is None:
        return BuildMetaConfig()
    if not p.is_file():
        raise ConfigError(f"config file not found: {p}")

    try:
        data = _read_config_file(p)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as ex:
        raise ConfigError(f"{p}: unreadable config: {ex}") from ex

    try:
        cfg = BuildMetaConfig.model_validate(data)
    except ValidationError as ex:
        raise ConfigError(f"{p}: invalid config: {ex}") from ex

    logger.debug("loaded build metadata config", extra={"event_type": "buildmeta.config_loaded", "path": str(p)})
    return cfg
