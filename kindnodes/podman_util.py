"""Helpers for querying and managing podman itself: version, volumes, storage."""

from __future__ import annotations

import json

import semver

from kindnodes.base import RunError, output, output_lines, run

MIN_SUPPORTED_VERSION = "1.8.0"


def is_available() -> bool:
    """Report whether a podman command line is installed."""
    try:
        lines = output_lines(["podman", "-v"])
    except (RunError, OSError):
        return False
    return len(lines) == 1 and lines[0].startswith("podman version")


def _parse_semantic(text: str) -> semver.Version:
    return semver.Version.parse(text.strip().removeprefix("v"))


def parse_podman_version(line: str) -> semver.Version:
    """Parse a line like ``podman version 1.7.1-dev`` into a version."""
    parts = line.split(" ")
    if len(parts) != 3:
        raise ValueError(f'podman --version contents should have 3 parts, got "{line}"')
    return _parse_semantic(parts[2])


def get_podman_version() -> semver.Version:
    """Return the version reported by ``podman --version``."""
    lines = output_lines(["podman", "--version"])
    if len(lines) != 1:
        raise RuntimeError(f"podman version should only be one line, got {len(lines)}")
    return parse_podman_version(lines[0])


def ensure_min_version() -> None:
    """Raise RuntimeError unless podman is at least the minimum supported version."""
    try:
        version = get_podman_version()
    except (RunError, RuntimeError, ValueError) as err:
        raise RuntimeError("failed to check podman version") from err
    if version < _parse_semantic(MIN_SUPPORTED_VERSION):
        raise RuntimeError(
            f'podman version "{version}" is too old, '
            f'please upgrade to "{MIN_SUPPORTED_VERSION}" or later'
        )


def create_anonymous_volume(label: str) -> str:
    """Create a volume labelled ``<label>=true`` and return its name."""
    # podman only filters on label keys, so the unique id is the key
    name = output(["podman", "volume", "create", "--label", f"{label}=true"])
    return name.decode().removesuffix("\n")


def get_volumes(label: str) -> list[str]:
    """Return the names of volumes carrying ``label``."""
    out = output(["podman", "volume", "ls", "--filter", f"label={label}", "--quiet"]).decode()
    if not out:
        return []
    return out.removesuffix("\n").split("\n")


def delete_volumes(names: list[str]) -> None:
    """Force-remove the named volumes."""
    run(["podman", "volume", "rm", "--force", *names])


def storage_needs_dev_mapper(data: bytes | str) -> bool:
    """Decide from ``podman info --format json`` whether /dev/mapper must be mounted."""
    raw = json.loads(data)
    store = (raw or {}).get("store") or {}
    driver = store.get("graphDriverName", "")
    backing = (store.get("graphStatus") or {}).get("Backing Filesystem", "")
    return driver in ("btrfs", "zfs", "devicemapper") or backing in ("btrfs", "xfs", "zfs")


def mount_dev_mapper() -> bool:
    """Report whether the storage driver or backing filesystem needs /dev/mapper."""
    try:
        data = output(["podman", "info", "--format", "json"])
        return storage_needs_dev_mapper(data)
    except (RunError, OSError, ValueError, AttributeError):
        return False