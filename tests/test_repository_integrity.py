"""Repository-level integrity checks."""

from __future__ import annotations

import json
import re
from pathlib import Path

from app.policy import DEFAULT_POLICY, sanitize_policy

CONFLICT_PATTERN = re.compile(r"^(<<<<<<<|=======|>>>>>>>)", re.MULTILINE)
IGNORED_PARTS = {".git", "__pycache__", ".mypy_cache", ".pytest_cache", ".venv"}
REPO_ROOT = Path(__file__).resolve().parents[1]


def test_repository_has_no_merge_conflict_markers() -> None:
    """Ensure no files in the repo still contain git conflict markers."""

    offending_files: list[Path] = []

    for path in REPO_ROOT.rglob("*"):
        if not path.is_file():
            continue
        if any(part in IGNORED_PARTS for part in path.parts):
            continue

        try:
            contents = path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            contents = path.read_text(encoding="utf-8", errors="ignore")

        if CONFLICT_PATTERN.search(contents):
            offending_files.append(path.relative_to(REPO_ROOT))

    assert not offending_files, (
        "The following files still contain git conflict markers: "
        + ", ".join(str(path) for path in offending_files)
    )


def test_example_policy_matches_built_in_default() -> None:
    """The shipped example policy should sanitise cleanly to the defaults."""

    raw = json.loads(
        (REPO_ROOT / "config" / "hero.policy.example.json").read_text(encoding="utf-8")
    )

    policy, issues = sanitize_policy(raw)

    assert issues == []
    assert policy.fingerprint() == DEFAULT_POLICY.fingerprint()
