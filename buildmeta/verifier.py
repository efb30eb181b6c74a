"""
Post-build verification of stamped metadata (SAFE / READ-ONLY).

Checks, all aggregated so one rerun fixes everything:
1) placeholder:  no `${NAME}` / `%NAME%` / `{{ name }}` token in any shipped *.html
2) format:       the `build-id` meta value matches the expected timestamp shape
3) presence:     a `commit-sha` meta value exists ("unknown" is acceptable)
4) consistency:  meta values == inline `window.__BUILD_META__` values
                 (and == version.json when the build ships one)

This module never writes to the output directory.
"""

from __future__ import annotations

import html
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from buildmeta.config import BuildMetaConfig
from buildmeta.logging import log_event
from buildmeta.placeholders import find_placeholders
from buildmeta.stamper import META_BUILD_ID, META_COMMIT_SHA, SCRIPT_ID

logger = logging.getLogger(__name__)

CHECK_INPUT = "input"
CHECK_PLACEHOLDER = "placeholder"
CHECK_FORMAT = "format"
CHECK_PRESENCE = "presence"
CHECK_CONSISTENCY = "consistency"

RE_META_TAG = re.compile(r"<meta\s+[^>]*>", re.IGNORECASE)
RE_ATTR = re.compile(r"([A-Za-z_:][-A-Za-z0-9_:.]*)\s*=\s*(\"([^\"]*)\"|'([^']*)')")
RE_BUILD_SCRIPT = re.compile(
    r"<script\s+[^>]*id=[\"']%s[\"'][^>]*>(?P<body>.*?)</script>" % re.escape(SCRIPT_ID),
    re.IGNORECASE | re.DOTALL,
)
RE_OBJECT_LITERAL = re.compile(r"\{.*\}", re.DOTALL)


@dataclass(frozen=True)
class Violation:
    check: str
    path: str
    message: str
    line: Optional[int] = None
    snippet: Optional[str] = None

    def render(self) -> str:
        loc = f"{self.path}:{self.line}" if self.line is not None else self.path
        return f"- [{self.check}] {loc}: {self.message}"


@dataclass
class VerificationReport:
    output_dir: str
    documents_scanned: int = 0
    violations: list[Violation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations

    def by_check(self, check: str) -> list[Violation]:
        return [v for v in self.violations if v.check == check]


@dataclass(frozen=True)
class StampedValues:
    meta_build_id: Optional[str]
    meta_commit_sha: Optional[str]
    script: Optional[dict[str, Any]]
    script_error: Optional[str] = None


def _meta_values(text: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for tag in RE_META_TAG.findall(text):
        attrs = {m.group(1).lower(): (m.group(3) if m.group(3) is not None else m.group(4)) for m in RE_ATTR.finditer(tag)}
        name = (attrs.get("name") or "").strip().lower()
        if name and "content" in attrs and name not in out:
            out[name] = html.unescape(attrs["content"])
    return out


def extract_stamped_values(text: str) -> StampedValues:
    metas = _meta_values(text)
    script: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    m = RE_BUILD_SCRIPT.search(text)
    if m is not None:
        obj = RE_OBJECT_LITERAL.search(m.group("body"))
        if obj is None:
            error = "inline build-meta script has no object literal"
        else:
            try:
                parsed = json.loads(obj.group(0))
            except json.JSONDecodeError as e:
                error = f"inline build-meta object is not valid JSON: {e.msg}"
            else:
                if isinstance(parsed, dict):
                    script = parsed
                else:
                    error = "inline build-meta value is not an object"

    return StampedValues(
        meta_build_id=metas.get(META_BUILD_ID),
        meta_commit_sha=metas.get(META_COMMIT_SHA),
        script=script,
        script_error=error,
    )


def _iter_html(output_dir: Path) -> list[Path]:
    return sorted(p for p in output_dir.rglob("*.html") if p.is_file())


def check_placeholders(path: str, text: str) -> list[Violation]:
    return [
        Violation(
            check=CHECK_PLACEHOLDER,
            path=path,
            line=m.line,
            message=f"leftover template placeholder {m.token}",
            snippet=m.snippet,
        )
        for m in find_placeholders(text)
    ]


def check_stamped_document(path: str, text: str, *, build_id_pattern: re.Pattern[str]) -> list[Violation]:
    violations: list[Violation] = []
    values = extract_stamped_values(text)

    # 2) format
    if values.meta_build_id is None:
        violations.append(Violation(CHECK_FORMAT, path, f'missing <meta name="{META_BUILD_ID}">'))
    elif not build_id_pattern.match(values.meta_build_id):
        violations.append(
            Violation(
                CHECK_FORMAT,
                path,
                f"build id {values.meta_build_id!r} does not match {build_id_pattern.pattern}",
            )
        )

    # 3) presence
    if values.meta_commit_sha is None:
        violations.append(Violation(CHECK_PRESENCE, path, f'missing <meta name="{META_COMMIT_SHA}">'))
    elif not values.meta_commit_sha.strip():
        violations.append(Violation(CHECK_PRESENCE, path, "commit sha meta tag is empty"))

    # 4) consistency (meta vs inline script)
    if values.script_error:
        violations.append(Violation(CHECK_CONSISTENCY, path, values.script_error))
    elif values.script is None:
        violations.append(Violation(CHECK_CONSISTENCY, path, f'missing <script id="{SCRIPT_ID}"> build object'))
    else:
        pairs = (
            ("buildId", values.meta_build_id, META_BUILD_ID),
            ("commitSha", values.meta_commit_sha, META_COMMIT_SHA),
        )
        for key, meta_value, meta_name in pairs:
            script_value = values.script.get(key)
            if meta_value is None:
                continue
            if script_value != meta_value:
                violations.append(
                    Violation(
                        CHECK_CONSISTENCY,
                        path,
                        f"meta {meta_name}={meta_value!r} but inline script {key}={script_value!r}",
                    )
                )

    return violations


def check_version_json(path: Path, rel: str, values: StampedValues) -> list[Violation]:
    try:
        data = json.loads(path.read_text(encoding="utf-8", errors="replace"))
    except (OSError, json.JSONDecodeError) as e:
        return [Violation(CHECK_CONSISTENCY, rel, f"unreadable version.json: {e}")]
    if not isinstance(data, dict):
        return [Violation(CHECK_CONSISTENCY, rel, "version.json is not an object")]

    violations: list[Violation] = []
    for key, expected in (("buildId", values.meta_build_id), ("commitSha", values.meta_commit_sha)):
        if expected is None:
            continue
        if data.get(key) != expected:
            violations.append(
                Violation(CHECK_CONSISTENCY, rel, f"{key}={data.get(key)!r} but HTML meta has {expected!r}")
            )
    return violations


def verify_build(output_dir: Path | str, config: Optional[BuildMetaConfig] = None) -> VerificationReport:
    cfg = config or BuildMetaConfig()
    root = Path(output_dir)
    report = VerificationReport(output_dir=str(root))

    if not root.is_dir():
        report.violations.append(Violation(CHECK_INPUT, str(root), "build output directory does not exist"))
        return report

    pages = _iter_html(root)
    report.documents_scanned = len(pages)
    if not pages:
        report.violations.append(Violation(CHECK_INPUT, str(root), "no HTML documents found in build output"))
        return report

    pattern = re.compile(cfg.build_id_pattern)
    entry_names = {n.replace("\\", "/").strip("/").lower() for n in cfg.entry_documents}
    entries: list[tuple[Path, str, str]] = []

    for p in pages:
        rel = str(p.relative_to(root))
        try:
            text = p.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            report.violations.append(Violation(CHECK_INPUT, rel, f"failed to read: {e}"))
            continue
        report.violations.extend(check_placeholders(rel, text))
        if p.relative_to(root).as_posix().lower() in entry_names:
            entries.append((p, rel, text))

    if not entries:
        report.violations.append(
            Violation(CHECK_INPUT, str(root), f"no entry document found (expected one of {sorted(entry_names)})")
        )

    for _p, rel, text in entries:
        report.violations.extend(check_stamped_document(rel, text, build_id_pattern=pattern))

    version_path = root / "version.json"
    if version_path.is_file() and entries:
        values = extract_stamped_values(entries[0][2])
        report.violations.extend(check_version_json(version_path, "version.json", values))

    if report.violations:
        log_event(
            logger,
            "buildmeta.verify_failed",
            severity="ERROR",
            message=f"{len(report.violations)} build metadata violation(s) in {root}",
            output_dir=str(root),
            violations=len(report.violations),
            checks=sorted({v.check for v in report.violations}),
        )
    else:
        log_event(
            logger,
            "buildmeta.verified",
            message=f"build metadata verified in {root}",
            output_dir=str(root),
            documents=report.documents_scanned,
        )
    return report
