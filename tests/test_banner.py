from __future__ import annotations

import pytest

from buildmeta.banner import format_build_banner, parse_build_banner
from buildmeta.errors import BannerFormatError
from buildmeta.identity import UNKNOWN
from tests.conftest import FIXED_BUILD_ID, FIXED_NOW, FULL_SHA


def test_valid_banner_passes_through_unchanged() -> None:
    text = f"FIXLO BUILD {{BUILD_ID: '2025-08-16T22:19:50', COMMIT_SHA: '{FULL_SHA}'}}"
    identity = parse_build_banner(text, now=FIXED_NOW)

    assert identity.build_id == "2025-08-16T22:19:50"
    assert identity.commit_sha == FULL_SHA


def test_banner_is_found_inside_a_log_line() -> None:
    text = "12:00:01 info  FIXLO BUILD {BUILD_ID: '20250817-120000', COMMIT_SHA: 'abc123def456'} (vercel)"
    identity = parse_build_banner(text, now=FIXED_NOW)

    assert identity.build_id == "20250817-120000"
    assert identity.commit_sha == "abc123def456"


def test_unknown_build_id_and_vercel_placeholder_commit() -> None:
    text = "FIXLO BUILD {BUILD_ID: 'unknown', COMMIT_SHA: '${VERCEL_GIT_COMMIT_SHA}'}"
    identity = parse_build_banner(text, now=FIXED_NOW)

    assert identity.build_id == FIXED_BUILD_ID
    assert identity.commit_sha == UNKNOWN
    assert identity.sources == {"build_id": "timestamp", "commit_sha": "fallback", "branch": "fallback"}


@pytest.mark.parametrize(
    "text",
    [
        "FIXLO BUILD {BUILD_ID: '%BUILD_ID%', COMMIT_SHA: '%COMMIT_SHA%'}",
        "FIXLO BUILD {BUILD_ID: '${BUILD_ID}', COMMIT_SHA: '${COMMIT_SHA}'}",
        "FIXLO BUILD {BUILD_ID: ' ', COMMIT_SHA: ' '}",
        "FIXLO BUILD {BUILD_ID: '', COMMIT_SHA: ''}",
    ],
)
def test_placeholder_banners_get_safe_fallbacks(text: str) -> None:
    identity = parse_build_banner(text, now=FIXED_NOW)

    assert identity.build_id == FIXED_BUILD_ID
    assert identity.commit_sha == UNKNOWN


def test_literal_unknown_commit_is_preserved() -> None:
    text = "FIXLO BUILD {BUILD_ID: '2025-08-17T12:34:56', COMMIT_SHA: 'unknown'}"
    identity = parse_build_banner(text, now=FIXED_NOW)

    assert identity.build_id == "2025-08-17T12:34:56"
    assert identity.commit_sha == UNKNOWN
    assert identity.sources["commit_sha"] == "banner"


@pytest.mark.parametrize("text", ["", "BUILD 123", "FIXLO BUILD {BUILD_ID: 1, COMMIT_SHA: 2}"])
def test_malformed_banner_raises(text: str) -> None:
    with pytest.raises(BannerFormatError):
        parse_build_banner(text)


def test_format_then_parse_keeps_identity() -> None:
    original = parse_build_banner(
        f"FIXLO BUILD {{BUILD_ID: '20250817-120000', COMMIT_SHA: '{FULL_SHA}'}}", now=FIXED_NOW
    )
    line = format_build_banner(original)

    assert line == f"FIXLO BUILD {{BUILD_ID: '20250817-120000', COMMIT_SHA: '{FULL_SHA}'}}"
    again = parse_build_banner(line, now=FIXED_NOW)
    assert (again.build_id, again.commit_sha) == (original.build_id, original.commit_sha)
