from __future__ import annotations

import json
import re
import shutil
from pathlib import Path

from buildmeta.cli import main
from buildmeta.reader import read_env_file, read_source_module
from tests.conftest import FULL_SHA, INDEX_TEMPLATE


def _client_root(tmp_path: Path) -> Path:
    root = tmp_path / "client"
    (root / "public").mkdir(parents=True)
    (root / "src").mkdir()
    (root / "public" / "index.html").write_text(INDEX_TEMPLATE, encoding="utf-8")
    return root


def _bundle(root: Path) -> Path:
    """Stand-in for the bundler: public/ is copied into build/."""
    out = root / "build"
    shutil.copytree(root / "public", out)
    return out


def test_ci_commit_end_to_end(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("VERCEL_GIT_COMMIT_SHA", FULL_SHA)
    root = _client_root(tmp_path)

    assert main(["--root", str(root), "stamp", "--no-vcs"]) == 0
    out = capsys.readouterr().out
    assert f"COMMIT_SHA: '{FULL_SHA}'" in out

    env = read_env_file(root / ".env.production.local")
    build_id, commit_sha = read_source_module(root / "src" / "buildInfo.js")
    assert commit_sha == env["REACT_APP_COMMIT_SHA"] == FULL_SHA
    assert build_id == env["REACT_APP_BUILD_ID"]
    assert re.match(r"^\d{8}-\d{6}$", build_id)

    _bundle(root)
    assert main(["--root", str(root), "verify", "build"]) == 0
    assert "build metadata verified" in capsys.readouterr().out


def test_no_sources_end_to_end_uses_unknown(tmp_path: Path, capsys) -> None:
    root = _client_root(tmp_path)

    assert main(["--root", str(root), "stamp", "--no-vcs"]) == 0
    _, commit_sha = read_source_module(root / "src" / "buildInfo.js")
    assert commit_sha == "unknown"

    _bundle(root)
    capsys.readouterr()
    assert main(["--root", str(root), "verify", "build"]) == 0


def test_override_build_id_is_stamped(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("BUILD_ID_OVERRIDE", "20250817-120000")
    root = _client_root(tmp_path)

    assert main(["--root", str(root), "stamp", "--no-vcs", "--kind", "env"]) == 0

    assert read_env_file(root / ".env.production.local")["REACT_APP_BUILD_ID"] == "20250817-120000"
    assert not (root / "src" / "buildInfo.js").exists()


def test_stamp_from_banner(tmp_path: Path) -> None:
    root = _client_root(tmp_path)
    banner = "FIXLO BUILD {BUILD_ID: 'unknown', COMMIT_SHA: '${VERCEL_GIT_COMMIT_SHA}'}"

    assert main(["--root", str(root), "stamp", "--from-banner", banner]) == 0

    build_id, commit_sha = read_source_module(root / "src" / "buildInfo.js")
    assert commit_sha == "unknown"
    assert re.match(r"^\d{8}-\d{6}$", build_id)


def test_malformed_banner_is_a_usage_error(tmp_path: Path, capsys) -> None:
    root = _client_root(tmp_path)

    assert main(["--root", str(root), "stamp", "--from-banner", "nope"]) == 2
    assert "Invalid FIXLO BUILD format" in capsys.readouterr().err


def test_stamp_write_failure_exits_nonzero(tmp_path: Path, capsys) -> None:
    root = tmp_path / "client"
    (root / "public").mkdir(parents=True)
    (root / "public" / "index.html").write_text(INDEX_TEMPLATE, encoding="utf-8")
    # no src/ directory: the generated module has nowhere to go

    assert main(["--root", str(root), "stamp", "--no-vcs"]) == 1

    err = capsys.readouterr().err
    assert str(root / "src" / "buildInfo.js") in err
    assert "ERROR:" in err


def test_verify_failure_lists_every_violation(tmp_path: Path, capsys) -> None:
    root = _client_root(tmp_path)
    _bundle(root)  # never stamped

    assert main(["--root", str(root), "verify", "build"]) == 1

    err = capsys.readouterr().err
    assert "[placeholder]" in err
    assert "%REACT_APP_BUILD_ID%" in err
    assert "[presence]" in err
    assert "[consistency]" in err


def test_resolve_json(monkeypatch, capsys, tmp_path: Path) -> None:
    monkeypatch.setenv("GITHUB_SHA", FULL_SHA)
    monkeypatch.setenv("RELEASE_BUILD_ID", "20250817-120000")
    monkeypatch.setenv("GITHUB_REF_NAME", "main")

    assert main(["--root", str(tmp_path), "resolve", "--no-vcs", "--json"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["buildId"] == "20250817-120000"
    assert payload["commitSha"] == FULL_SHA
    assert payload["branch"] == "main"


def test_resolve_banner(monkeypatch, capsys, tmp_path: Path) -> None:
    monkeypatch.setenv("COMMIT_SHA", "abc123def456")
    monkeypatch.setenv("BUILD_ID_OVERRIDE", "20250817-120000")

    assert main(["--root", str(tmp_path), "resolve", "--no-vcs", "--banner"]) == 0

    assert capsys.readouterr().out.strip() == "FIXLO BUILD {BUILD_ID: '20250817-120000', COMMIT_SHA: 'abc123def456'}"


def test_invalid_config_is_a_usage_error(tmp_path: Path, capsys) -> None:
    (tmp_path / "buildmeta.yaml").write_text("module_flavor: ts\n", encoding="utf-8")

    assert main(["--root", str(tmp_path), "resolve", "--no-vcs"]) == 2
    assert "invalid config" in capsys.readouterr().err


def test_about_reads_generated_module(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("COMMIT_SHA", FULL_SHA)
    monkeypatch.setenv("BUILD_ID_OVERRIDE", "20250817-120000")
    root = _client_root(tmp_path)
    assert main(["--root", str(root), "stamp", "--no-vcs", "--kind", "module"]) == 0
    capsys.readouterr()

    assert main(["--root", str(root), "about"]) == 0

    assert capsys.readouterr().out.strip() == f"Build: 20250817-120000 | Commit: {FULL_SHA}"


def test_logs_are_json_lines_on_stderr(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("COMMIT_SHA", FULL_SHA)

    assert main(["--root", str(tmp_path), "resolve", "--no-vcs", "--json"]) == 0

    err_lines = [ln for ln in capsys.readouterr().err.splitlines() if ln.strip()]
    events = [json.loads(ln) for ln in err_lines]
    resolved = [e for e in events if e["event_type"] == "buildmeta.resolved"]
    assert resolved
    assert resolved[0]["service"] == "buildmeta"
    assert resolved[0]["sha"] == FULL_SHA


def test_non_utf8_html_fails_stamp_without_touching_files(tmp_path: Path, capsys) -> None:
    root = _client_root(tmp_path)
    page = root / "public" / "index.html"
    page.write_bytes(b"<html><head><title>Caf\xe9</title></head><body></body></html>")

    assert main(["--root", str(root), "stamp", "--no-vcs", "--kind", "html"]) == 1

    err = capsys.readouterr().err
    assert "not valid UTF-8" in err
    assert page.read_bytes() == b"<html><head><title>Caf\xe9</title></head><body></body></html>"


def test_non_utf8_config_is_a_usage_error(tmp_path: Path, capsys) -> None:
    (tmp_path / "buildmeta.yaml").write_bytes(b"# caf\xe9\nuse_vcs: false\n")

    assert main(["--root", str(tmp_path), "resolve", "--no-vcs"]) == 2
    assert "unreadable config" in capsys.readouterr().err


def test_about_with_undecodable_module_falls_back(tmp_path: Path, capsys) -> None:
    root = _client_root(tmp_path)
    (root / "src" / "buildInfo.js").write_bytes(b"// caf\xe9\n")

    assert main(["--root", str(root), "about"]) == 0
    assert capsys.readouterr().out.strip() == "Build: dev | Commit: unknown"
