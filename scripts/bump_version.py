#!/usr/bin/env python3
"""Compute the next CampGuard release version and stamp it into the manifest.

CampGuard uses the Home Assistant calendar scheme ``YYYY.M.N``: the year,
the month without a leading zero and a release counter that restarts at 0
every month.  Release tags carry a ``v`` prefix (``v2026.10.0``).

Development builds of a branch are versioned ``YYYY.M.<branch-slug>``; a
repeated build of the same branch in the same month gets a ``.N`` suffix.

Usage:
  python scripts/bump_version.py                        # print the next release version
  python scripts/bump_version.py --dev <branch>         # print a development version
  python scripts/bump_version.py --check                # validate the manifest version
  python scripts/bump_version.py [--dev <branch>] --apply   # also write manifest.json
"""

from __future__ import annotations

import json
import re
import subprocess
import sys
from datetime import datetime, timezone
from pathlib import Path

MANIFEST_PATH = (
    Path(__file__).resolve().parent.parent
    / "custom_components"
    / "campguard"
    / "manifest.json"
)
RELEASE_TAG = re.compile(r"^v(\d{4})\.(\d{1,2})\.(\d+)$")
VERSION_PATTERN = re.compile(r"^\d{4}\.(?:[1-9]|1[0-2])\.(?:\d+|[a-z0-9-]+(?:\.\d+)?)$")
_SLUG_SEPARATORS = re.compile(r"[^a-z0-9]+")


def list_tags() -> list[str]:
    """Return the repository's ``v*`` tags, or nothing outside a git checkout."""
    result = subprocess.run(
        ["git", "tag", "--list", "v*"],
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        return []
    return result.stdout.split()


def _year_month() -> tuple[int, int]:
    now = datetime.now(tz=timezone.utc)
    return now.year, now.month


def next_version() -> str:
    """Return the next release version for the current UTC month."""
    year, month = _year_month()
    counters = [
        int(match.group(3))
        for match in map(RELEASE_TAG.match, list_tags())
        if match and int(match.group(1)) == year and int(match.group(2)) == month
    ]
    return f"{year}.{month}.{max(counters, default=-1) + 1}"


def branch_slug(branch: str) -> str:
    """Reduce a branch name to lowercase letters, digits and single dashes.

    A purely numeric result is prefixed with ``dev-`` so the version can
    never be mistaken for a release counter.

    Examples::

        branch_slug("feature/quota-parser")  -> "feature-quota-parser"
        branch_slug("Fix__Restore")          -> "fix-restore"
        branch_slug("42")                    -> "dev-42"
    """
    slug = _SLUG_SEPARATORS.sub("-", branch.lower()).strip("-")
    if slug.isdigit():
        slug = f"dev-{slug}"
    return slug


def dev_version(branch: str) -> str:
    """Return a development version for *branch* in the current UTC month."""
    year, month = _year_month()
    base = f"{year}.{month}.{branch_slug(branch)}"
    tags = list_tags()
    if f"v{base}" not in tags:
        return base

    repeat = re.compile(r"^v" + re.escape(base) + r"\.(\d+)$")
    counters = [int(m.group(1)) for m in map(repeat.match, tags) if m]
    return f"{base}.{max(counters, default=0) + 1}"


def read_manifest_version(path: Path = MANIFEST_PATH) -> str:
    """Return the version currently recorded in the integration manifest."""
    return json.loads(path.read_text())["version"]


def is_valid_version(version: str) -> bool:
    """Return True when *version* follows the release or development scheme."""
    return VERSION_PATTERN.match(version) is not None


def write_manifest_version(version: str, path: Path = MANIFEST_PATH) -> None:
    """Store *version* in the integration manifest, keeping its other keys."""
    if not is_valid_version(version):
        raise ValueError(f"Not a calendar version: {version!r}")
    data = json.loads(path.read_text())
    data["version"] = version
    path.write_text(json.dumps(data, indent=2) + "\n")


def main(argv: list[str] | None = None) -> int:
    """Entry point; returns the process exit status."""
    args = sys.argv[1:] if argv is None else argv

    if "--check" in args:
        version = read_manifest_version(MANIFEST_PATH)
        if not is_valid_version(version):
            print(f"manifest.json version {version!r} is not a calendar version", file=sys.stderr)
            return 1
        print(version)
        return 0

    if "--dev" in args:
        idx = args.index("--dev")
        if idx + 1 >= len(args) or args[idx + 1].startswith("-"):
            print("Usage: bump_version.py --dev <branch> [--apply]", file=sys.stderr)
            return 1
        version = dev_version(args[idx + 1])
    else:
        version = next_version()

    if "--apply" in args:
        write_manifest_version(version, MANIFEST_PATH)
        print(f"Updated {MANIFEST_PATH} to {version}")
    else:
        print(version)
    return 0


if __name__ == "__main__":
    sys.exit(main())
