"""
Build identity pipeline:
- Resolver: one (build_id, commit_sha) per build from env / git / fallback
- Stamper: env file, generated module, HTML meta + inline object, version.json
- Verifier: post-build placeholder / format / presence / consistency checks
"""

from buildmeta.identity import UNKNOWN, BuildIdentity
from buildmeta.resolver import resolve
from buildmeta.stamper import ArtifactKind, stamp, stamp_all
from buildmeta.verifier import verify_build

__all__ = [
    "UNKNOWN",
    "ArtifactKind",
    "BuildIdentity",
    "resolve",
    "stamp",
    "stamp_all",
    "verify_build",
]
