"""
buildmeta CLI.

  buildmeta resolve [--json | --banner]   print the resolved identity
  buildmeta stamp [--kind K ...]          resolve, then write every configured artifact
  buildmeta verify OUTPUT_DIR             check a finished build output directory
  buildmeta about [--module PATH]         print the about/version line

Exit codes: 0 ok, 1 hard failure (write failure / verification violations),
2 usage or configuration error.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Optional

from buildmeta.banner import format_build_banner, parse_build_banner
from buildmeta.config import BuildMetaConfig, load_config, resolve_path
from buildmeta.errors import BannerFormatError, ConfigError, StampError
from buildmeta.identity import BuildIdentity
from buildmeta.logging import init_structured_logging, log_event
from buildmeta.reader import describe_build
from buildmeta.resolver import resolve
from buildmeta.stamper import ArtifactKind, stamp_all
from buildmeta.vcs import GitVcs, NullVcs, VcsProvider
from buildmeta.verifier import verify_build

logger = logging.getLogger("buildmeta.cli")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="buildmeta",
        description="Resolve, stamp and verify build identity metadata.",
    )
    parser.add_argument("--root", default=".", help="Build root (config and artifact paths are relative to it).")
    parser.add_argument("--config", default=None, help="Config file (default: <root>/buildmeta.yaml if present).")
    parser.add_argument("--log-level", default=None, help="Log level (default: $LOG_LEVEL or INFO).")
    sub = parser.add_subparsers(dest="command", required=True)

    p_resolve = sub.add_parser("resolve", help="Print the resolved build identity")
    p_resolve.add_argument("--no-vcs", action="store_true", help="Do not query git.")
    fmt = p_resolve.add_mutually_exclusive_group()
    fmt.add_argument("--json", action="store_true", help="Print as JSON.")
    fmt.add_argument("--banner", action="store_true", help="Print as a FIXLO BUILD banner line.")

    p_stamp = sub.add_parser("stamp", help="Write build metadata into configured artifacts")
    p_stamp.add_argument("--no-vcs", action="store_true", help="Do not query git.")
    p_stamp.add_argument(
        "--kind",
        action="append",
        choices=[k.value for k in ArtifactKind],
        help="Only stamp these artifact kinds (repeatable; default: all configured).",
    )
    p_stamp.add_argument(
        "--from-banner",
        default=None,
        metavar="TEXT",
        help="Take the identity from a \"FIXLO BUILD {BUILD_ID: '...', COMMIT_SHA: '...'}\" line.",
    )

    p_verify = sub.add_parser("verify", help="Verify stamped metadata in a build output directory")
    p_verify.add_argument("output_dir", help="Finished build output directory (e.g. build/).")

    p_about = sub.add_parser("about", help="Print the about/version line")
    p_about.add_argument("--module", default=None, help="Generated module to read (default: configured module_path).")

    return parser


def _vcs_for(config: BuildMetaConfig, root: Path, *, disabled: bool) -> VcsProvider:
    if disabled or not config.use_vcs:
        return NullVcs()
    return GitVcs(root, timeout=config.vcs_timeout_s)


def _resolve_identity(config: BuildMetaConfig, root: Path, *, no_vcs: bool) -> BuildIdentity:
    return resolve(dict(os.environ), _vcs_for(config, root, disabled=no_vcs), aliases=config.aliases)


def _cmd_resolve(args: argparse.Namespace, config: BuildMetaConfig, root: Path) -> int:
    identity = _resolve_identity(config, root, no_vcs=args.no_vcs)
    if args.json:
        print(json.dumps(identity.as_payload(), sort_keys=True))
    elif args.banner:
        print(format_build_banner(identity))
    else:
        print(f"BUILD_ID={identity.build_id}")
        print(f"COMMIT_SHA={identity.commit_sha}")
        print(f"BRANCH={identity.branch}")
        print(f"BUILD_TIME={identity.build_time_iso}")
    return EXIT_OK


def _cmd_stamp(args: argparse.Namespace, config: BuildMetaConfig, root: Path) -> int:
    if args.from_banner is not None:
        identity = parse_build_banner(args.from_banner)
    else:
        identity = _resolve_identity(config, root, no_vcs=args.no_vcs)

    kinds = {ArtifactKind(k) for k in args.kind} if args.kind else None
    try:
        results = stamp_all(identity, config, root, kinds=kinds)
    except StampError as e:
        log_event(
            logger,
            "buildmeta.stamp_failed",
            severity="ERROR",
            message=str(e),
            path=e.path,
            reason=e.reason,
        )
        print(f"ERROR: {e}", file=sys.stderr)
        print("Fix: create the target directory / fix permissions, or adjust buildmeta.yaml.", file=sys.stderr)
        return EXIT_FAILURE

    print(format_build_banner(identity))
    print(f"OK: stamped {len(results)} artifact(s) for build {identity.build_id} @ {identity.commit_sha}.")
    return EXIT_OK


def _cmd_verify(args: argparse.Namespace, config: BuildMetaConfig, root: Path) -> int:
    report = verify_build(resolve_path(root, args.output_dir), config)
    if not report.ok:
        print(
            f"ERROR: build metadata verification failed ({len(report.violations)} violation(s)).",
            file=sys.stderr,
        )
        for v in report.violations:
            print(v.render(), file=sys.stderr)
            if v.snippet:
                print(f"  > {v.snippet}", file=sys.stderr)
        return EXIT_FAILURE

    print(f"OK: scanned {report.documents_scanned} HTML document(s); build metadata verified.")
    return EXIT_OK


def _cmd_about(args: argparse.Namespace, config: BuildMetaConfig, root: Path) -> int:
    module: Optional[Path] = None
    if args.module:
        module = resolve_path(root, args.module)
    elif config.module_path:
        module = resolve_path(root, config.module_path)
    print(describe_build(module, keys=config.env_keys))
    return EXIT_OK


_COMMANDS = {
    "resolve": _cmd_resolve,
    "stamp": _cmd_stamp,
    "verify": _cmd_verify,
    "about": _cmd_about,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    init_structured_logging(level=args.log_level)

    root = Path(args.root)
    try:
        config = load_config(root, args.config)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_USAGE

    handler = _COMMANDS.get(args.command)
    if handler is None:
        raise AssertionError(f"Unhandled command: {args.command}")
    try:
        return handler(args, config, root)
    except BannerFormatError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
