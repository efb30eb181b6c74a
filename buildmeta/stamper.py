"""
Stamp a resolved BuildIdentity into build artifacts.

Artifact kinds:
- env:          `KEY=VALUE` lines for the bundler's env loader (.env.production.local)
- module:       generated source module exporting BUILD_ID / COMMIT_SHA (js or py)
- html:         meta tags + inline `window.__BUILD_META__` object in an HTML document
- version-json: `version.json` served next to the app

Rules:
- Renderers are pure and deterministic; every kind encodes the same identity.
- Writes replace the whole file atomically (temp file + rename), so a failed
  write leaves the previous file intact and re-stamping is byte-identical.
- Parent directories are never created: a missing directory means the build
  layout is wrong and the step must fail (StampError), not write somewhere new.
- `stamp_all` checks every destination before writing any of them.
"""

from __future__ import annotations

import html
import json
import logging
import os
import re
import stat
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from buildmeta.config import BuildMetaConfig, EnvKeys, resolve_path
from buildmeta.errors import StampError
from buildmeta.identity import BuildIdentity
from buildmeta.logging import log_event

logger = logging.getLogger(__name__)

GENERATED_BANNER = "AUTO-GENERATED by buildmeta at build time. DO NOT EDIT."

META_BUILD_ID = "build-id"
META_COMMIT_SHA = "commit-sha"
META_BUILD_TIMESTAMP = "build-timestamp"
SCRIPT_ID = "build-meta"
SCRIPT_GLOBAL = "window.__BUILD_META__"

BLOCK_START = "<!-- buildmeta:start -->"
BLOCK_END = "<!-- buildmeta:end -->"

_RE_BLOCK = re.compile(re.escape(BLOCK_START) + r".*?" + re.escape(BLOCK_END), re.DOTALL)
_RE_OWNED_META = re.compile(
    r"[ \t]*<meta\s+[^>]*name=[\"'](?:%s|%s|%s)[\"'][^>]*>[ \t]*\r?\n?"
    % (re.escape(META_BUILD_ID), re.escape(META_COMMIT_SHA), re.escape(META_BUILD_TIMESTAMP)),
    re.IGNORECASE,
)
_RE_OWNED_SCRIPT = re.compile(
    r"[ \t]*<script\s+[^>]*id=[\"']%s[\"'][^>]*>.*?</script>[ \t]*\r?\n?" % re.escape(SCRIPT_ID),
    re.IGNORECASE | re.DOTALL,
)
_RE_HEAD_CLOSE = re.compile(r"</head\s*>", re.IGNORECASE)
_RE_SCRIPT_BODY = re.compile(r"(<script\b[^>]*>)(.*?)(</script\s*>)", re.IGNORECASE | re.DOTALL)

_DEFAULT_FILE_MODE = 0o644


class ArtifactKind(str, Enum):
    ENV = "env"
    MODULE = "module"
    HTML = "html"
    VERSION_JSON = "version-json"


@dataclass(frozen=True)
class StampResult:
    kind: ArtifactKind
    path: Path
    bytes_written: int
    changed: bool


# --- pure renderers ---------------------------------------------------------


def render_env_file(identity: BuildIdentity, keys: Optional[EnvKeys] = None) -> str:
    k = keys or EnvKeys()
    lines = [
        f"# {GENERATED_BANNER}",
        f"{k.build_id}={identity.build_id}",
        f"{k.commit_sha}={identity.commit_sha}",
    ]
    if k.build_time:
        lines.append(f"{k.build_time}={identity.build_time_iso}")
    if k.branch:
        lines.append(f"{k.branch}={identity.branch}")
    return "\n".join(lines) + "\n"


def render_source_module(identity: BuildIdentity, flavor: str = "js") -> str:
    # json.dumps yields a literal that is valid in both JS and Python.
    bid = json.dumps(identity.build_id)
    sha = json.dumps(identity.commit_sha)
    if flavor == "js":
        return (
            f"// {GENERATED_BANNER}\n"
            f"export const BUILD_ID = {bid};\n"
            f"export const COMMIT_SHA = {sha};\n"
        )
    if flavor == "py":
        return (
            f"# {GENERATED_BANNER}\n"
            f"BUILD_ID = {bid}\n"
            f"COMMIT_SHA = {sha}\n"
        )
    raise ValueError(f"unsupported module flavor: {flavor!r}")


def render_version_json(identity: BuildIdentity) -> str:
    payload = {
        "buildId": identity.build_id,
        "commitSha": identity.commit_sha,
        "commit": identity.commit_sha,
        "branch": identity.branch,
        "buildTime": identity.build_time_iso,
    }
    return json.dumps(payload, indent=2, sort_keys=True) + "\n"


def render_html_block(identity: BuildIdentity) -> str:
    def meta(name: str, value: str) -> str:
        return f'<meta name="{name}" content="{html.escape(value, quote=True)}">'

    # `</` must not appear raw inside an inline script.
    obj = json.dumps(identity.as_payload(), sort_keys=True).replace("</", "<\\/")
    return "\n".join(
        [
            BLOCK_START,
            meta(META_BUILD_ID, identity.build_id),
            meta(META_COMMIT_SHA, identity.commit_sha),
            meta(META_BUILD_TIMESTAMP, identity.build_time_iso),
            f'<script id="{SCRIPT_ID}">{SCRIPT_GLOBAL} = {obj};</script>',
            BLOCK_END,
        ]
    )


def _replace_tokens(text: str, values: dict[str, str]) -> str:
    for key, value in values.items():
        text = text.replace(f"%{key}%", value).replace("${" + key + "}", value)
    return text


def substitute_placeholders(text: str, identity: BuildIdentity, keys: Optional[EnvKeys] = None) -> str:
    """
    Expand `%KEY%` / `${KEY}` tokens for the stamped env keys (CRA-style templates).

    Markup gets HTML-escaped values; `<script>` bodies are raw text, so they get
    the value verbatim.
    """
    k = keys or EnvKeys()
    values = {k.build_id: identity.build_id, k.commit_sha: identity.commit_sha}
    if k.build_time:
        values[k.build_time] = identity.build_time_iso
    if k.branch:
        values[k.branch] = identity.branch
    escaped = {key: html.escape(value, quote=True) for key, value in values.items()}

    out: list[str] = []
    pos = 0
    for m in _RE_SCRIPT_BODY.finditer(text):
        out.append(_replace_tokens(text[pos : m.start()], escaped))
        out.append(_replace_tokens(m.group(1), escaped))
        out.append(_replace_tokens(m.group(2), values))
        out.append(m.group(3))
        pos = m.end()
    out.append(_replace_tokens(text[pos:], escaped))
    return "".join(out)


def _strip_owned_tags(text: str) -> str:
    return _RE_OWNED_SCRIPT.sub("", _RE_OWNED_META.sub("", text))


def inject_html(document: str, identity: BuildIdentity, keys: Optional[EnvKeys] = None) -> str:
    """
    Return `document` with exactly one build-meta block.

    An existing block is replaced in place; otherwise stray owned tags are
    removed and the block goes right before `</head>`.
    """
    block = render_html_block(identity)
    m = _RE_BLOCK.search(document)
    if m is not None:
        before = substitute_placeholders(_strip_owned_tags(document[: m.start()]), identity, keys)
        after = substitute_placeholders(_strip_owned_tags(document[m.end() :]), identity, keys)
        return before + block + after

    cleaned = substitute_placeholders(_strip_owned_tags(document), identity, keys)
    head = _RE_HEAD_CLOSE.search(cleaned)
    if head is None:
        raise ValueError("document has no </head> to inject build metadata into")
    return cleaned[: head.start()] + block + "\n" + cleaned[head.start() :]


# --- file writes ------------------------------------------------------------


def _write_bytes(path: Path, data: bytes) -> bool:
    try:
        previous = path.read_bytes() if path.is_file() else None
        mode = stat.S_IMODE(path.stat().st_mode) if previous is not None else _DEFAULT_FILE_MODE
    except OSError:
        previous = None
        mode = _DEFAULT_FILE_MODE

    # Temp file in the target directory so os.replace stays on one filesystem.
    tmp: Optional[str] = None
    try:
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, path)
        tmp = None
    except OSError as e:
        raise StampError(path, e.strerror or str(e)) from e
    finally:
        if tmp is not None and os.path.exists(tmp):
            os.unlink(tmp)
    return previous != data


def check_destination(kind: ArtifactKind, dest: Path) -> None:
    if not dest.parent.is_dir():
        raise StampError(dest, f"parent directory does not exist: {dest.parent}")
    if kind is ArtifactKind.HTML and not dest.is_file():
        raise StampError(dest, "cannot read HTML document: No such file or directory")


def render_for(
    identity: BuildIdentity,
    kind: ArtifactKind,
    destination: Path,
    *,
    keys: Optional[EnvKeys] = None,
    flavor: str = "js",
) -> str:
    if kind is ArtifactKind.ENV:
        return render_env_file(identity, keys)
    if kind is ArtifactKind.MODULE:
        return render_source_module(identity, flavor)
    if kind is ArtifactKind.VERSION_JSON:
        return render_version_json(identity)
    if kind is ArtifactKind.HTML:
        try:
            document = destination.read_text(encoding="utf-8")
        except OSError as e:
            raise StampError(destination, f"cannot read HTML document: {e.strerror or e}") from e
        except UnicodeDecodeError as e:
            raise StampError(destination, f"not valid UTF-8: {e}") from e
        try:
            return inject_html(document, identity, keys)
        except ValueError as e:
            raise StampError(destination, str(e)) from e
    raise ValueError(f"unknown artifact kind: {kind!r}")


def stamp(
    identity: BuildIdentity,
    kind: ArtifactKind | str,
    destination: Path | str,
    *,
    keys: Optional[EnvKeys] = None,
    flavor: str = "js",
) -> StampResult:
    k = ArtifactKind(kind)
    dest = Path(destination)
    check_destination(k, dest)

    content = render_for(identity, k, dest, keys=keys, flavor=flavor)
    data = content.encode("utf-8")
    changed = _write_bytes(dest, data)

    log_event(
        logger,
        "buildmeta.stamped",
        message=f"stamped {k.value} -> {dest}",
        sha=identity.commit_sha,
        kind=k.value,
        path=str(dest),
        build_id=identity.build_id,
        commit_sha=identity.commit_sha,
        changed=changed,
    )
    return StampResult(kind=k, path=dest, bytes_written=len(data), changed=changed)


def planned_artifacts(config: BuildMetaConfig, root: Path) -> list[tuple[ArtifactKind, Path]]:
    plan: list[tuple[ArtifactKind, Path]] = []
    if config.env_file:
        plan.append((ArtifactKind.ENV, resolve_path(root, config.env_file)))
    if config.module_path:
        plan.append((ArtifactKind.MODULE, resolve_path(root, config.module_path)))
    for rel in config.html_documents:
        plan.append((ArtifactKind.HTML, resolve_path(root, rel)))
    for rel in config.version_json:
        plan.append((ArtifactKind.VERSION_JSON, resolve_path(root, rel)))
    return plan


def stamp_all(
    identity: BuildIdentity,
    config: BuildMetaConfig,
    root: Path | str,
    *,
    kinds: Optional[set[ArtifactKind]] = None,
) -> list[StampResult]:
    """
    Write every configured artifact. The first failure aborts the step.

    Destinations are checked up front, so a bad layout fails before any file
    is touched rather than leaving a mix of new and stale artifacts.
    """
    plan = [(kind, dest) for kind, dest in planned_artifacts(config, Path(root)) if kinds is None or kind in kinds]
    for kind, dest in plan:
        check_destination(kind, dest)

    results: list[StampResult] = []
    for kind, dest in plan:
        results.append(stamp(identity, kind, dest, keys=config.env_keys, flavor=config.module_flavor))
    return results
