"""Cluster node provider that drives the ``docker`` command line."""

from __future__ import annotations

import csv
import io
import json
import logging

from kindnodes.base import Node, ProviderInfo, RunError, output, output_lines, run
from kindnodes.docker_network import CLUSTER_LABEL_KEY
from kindnodes.node import ContainerNode

_log = logging.getLogger(__name__)


def parse_docker_info(data: bytes | str) -> ProviderInfo:
    """Build ProviderInfo from ``docker info --format '{{json .}}'`` output."""
    raw = json.loads(data)
    info = ProviderInfo(cgroup2=raw.get("CgroupVersion") == "2")
    # with no cgroup driver the limit flags are meaningless
    if raw.get("CgroupDriver") != "none":
        info.supports_memory_limit = bool(raw.get("MemoryLimit", False))
        info.supports_pids_limit = bool(raw.get("PidsLimit", False))
        info.supports_cpu_shares = bool(raw.get("CPUShares", False))
    for option in raw.get("SecurityOptions") or []:
        # an option looks like "name=seccomp,profile=default"
        for row in csv.reader(io.StringIO(option)):
            if "name=rootless" in row:
                info.rootless = True
    return info


def docker_info() -> ProviderInfo:
    """Query docker for its capabilities."""
    try:
        data = output(["docker", "info", "--format", "{{json .}}"])
    except RunError as err:
        raise RuntimeError("failed to get docker info") from err
    return parse_docker_info(data)


class DockerProvider:
    """Provides cluster nodes as docker containers."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or _log
        self._info: ProviderInfo | None = None

    def __str__(self) -> str:
        return "docker"

    def list_clusters(self) -> list[str]:
        """Return the sorted names of clusters that have node containers."""
        try:
            lines = output_lines([
                "docker", "ps", "-a",
                "--filter", f"label={CLUSTER_LABEL_KEY}",
                "--format", f'{{{{.Label "{CLUSTER_LABEL_KEY}"}}}}',
            ])
        except RunError as err:
            raise RuntimeError("failed to list clusters") from err
        return sorted(set(lines))

    def list_nodes(self, cluster: str) -> list[ContainerNode]:
        """Return the nodes of ``cluster``, running or not."""
        try:
            lines = output_lines([
                "docker", "ps", "-a",
                "--filter", f"label={CLUSTER_LABEL_KEY}={cluster}",
                "--format", "{{.Names}}",
            ])
        except RunError as err:
            raise RuntimeError("failed to list nodes") from err
        return [ContainerNode(name, "docker") for name in lines]

    def delete_nodes(self, nodes: list[Node]) -> None:
        """Force-remove the node containers and their volumes."""
        if not nodes:
            return
        try:
            run(["docker", "rm", "-f", "-v", *(str(node) for node in nodes)])
        except RunError as err:
            raise RuntimeError("failed to delete nodes") from err

    def info(self) -> ProviderInfo:
        """Return the runtime capabilities, queried once and then cached."""
        if self._info is None:
            self._info = docker_info()
        return self._info


def is_available() -> bool:
    """Report whether a docker command line is installed."""
    try:
        lines = output_lines(["docker", "-v"])
    except (RunError, OSError):
        return False
    return len(lines) == 1 and lines[0].startswith("Docker version")


def userns_remap() -> bool:
    """Report whether dockerd has user namespace remapping enabled."""
    try:
        lines = output_lines(["docker", "info", "--format", "'{{json .SecurityOptions}}'"])
    except (RunError, OSError):
        return False
    return bool(lines) and "name=userns" in lines[0]


def mount_dev_mapper() -> bool:
    """Report whether the storage driver or backing filesystem needs /dev/mapper."""
    try:
        lines = output_lines(["docker", "info", "-f", "{{.Driver}}"])
    except (RunError, OSError):
        return False
    if len(lines) != 1:
        return False
    storage = lines[0].strip().lower()
    if storage in ("btrfs", "zfs", "devicemapper"):
        return True

    try:
        lines = output_lines(["docker", "info", "-f", "{{json .DriverStatus }}"])
    except (RunError, OSError):
        return False
    if len(lines) != 1:
        return False
    try:
        status = json.loads(lines[0])
    except ValueError:
        return False
    for item in status or []:
        if len(item) >= 2 and item[0] == "Backing Filesystem":
            storage = item[1].lower()
            break
    return storage in ("btrfs", "zfs", "xfs")


def mount_fuse() -> bool:
    """Report whether /dev/fuse should be passed in (rootless docker)."""
    try:
        return docker_info().rootless
    except (RuntimeError, ValueError, OSError, csv.Error):
        return False