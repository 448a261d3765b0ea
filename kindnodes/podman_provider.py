"""Cluster node provider that drives the ``podman`` command line."""

from __future__ import annotations

import json
import logging

import semver

from kindnodes.base import Node, ProviderInfo, RunError, output, output_lines, run
from kindnodes.node import ContainerNode
from kindnodes.podman_network import CLUSTER_LABEL_KEY
from kindnodes.podman_util import delete_volumes, get_podman_version, get_volumes

_log = logging.getLogger(__name__)

_INFO_ARGS = ["info", "--format", "json"]
_CONTROLLER_INFO_VERSION = semver.Version.parse("4.0.0")
_ROOTLESS_WARNING = (
    "Cgroup controller detection is not implemented for Podman. "
    'If you see cgroup-related errors, you might need to set systemd property "Delegate=yes", '
    "see the rootless documentation"
)


def parse_podman_info(
    data: bytes | str,
    version: semver.Version,
    logger: logging.Logger | None = None,
) -> ProviderInfo:
    """Build ProviderInfo from ``podman info --format json`` output.

    Before podman 4.0.0 no controller details are reported, so every
    cgroup controller is assumed to be available.
    """
    raw = json.loads(data) or {}
    host = raw.get("host") or {}
    controllers = host.get("cgroupControllers") or []
    security = host.get("security") or {}

    has_controller_info = version >= _CONTROLLER_INFO_VERSION
    if has_controller_info:
        memory = "memory" in controllers
        pids = "pids" in controllers
        cpu = "cpu" in controllers
    else:
        memory = pids = cpu = True

    info = ProviderInfo(
        rootless=bool(security.get("rootless", False)),
        cgroup2=host.get("cgroupVersion") == "v2",
        supports_memory_limit=memory,
        supports_pids_limit=pids,
        supports_cpu_shares=cpu,
    )
    if info.rootless and not has_controller_info and logger is not None:
        logger.warning(_ROOTLESS_WARNING)
    return info


def podman_info(logger: logging.Logger | None = None) -> ProviderInfo:
    """Query podman for its capabilities."""
    try:
        data = output(["podman", *_INFO_ARGS])
    except RunError as err:
        out = err.stdout.decode(errors="replace")
        raise RuntimeError(
            f'failed to get podman info (podman {" ".join(_INFO_ARGS)}): "{out}"'
        ) from err
    try:
        version = get_podman_version()
    except (RunError, RuntimeError, ValueError) as err:
        raise RuntimeError("failed to check podman version") from err
    return parse_podman_info(data, version, logger)


class PodmanProvider:
    """Provides cluster nodes as podman containers."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or _log
        self.logger.warning("enabling experimental podman provider")
        self._info: ProviderInfo | None = None

    def __str__(self) -> str:
        return "podman"

    def list_clusters(self) -> list[str]:
        """Return the sorted names of clusters that have node containers."""
        try:
            lines = output_lines([
                "podman", "ps", "-a",
                "--filter", f"label={CLUSTER_LABEL_KEY}",
                "--format", f'{{{{index .Labels "{CLUSTER_LABEL_KEY}"}}}}',
            ])
        except RunError as err:
            raise RuntimeError("failed to list clusters") from err
        return sorted(set(lines))

    def list_nodes(self, cluster: str) -> list[ContainerNode]:
        """Return the nodes of ``cluster``, running or not."""
        try:
            lines = output_lines([
                "podman", "ps", "-a",
                "--filter", f"label={CLUSTER_LABEL_KEY}={cluster}",
                "--format", "{{.Names}}",
            ])
        except RunError as err:
            raise RuntimeError("failed to list nodes") from err
        return [ContainerNode(name, "podman") for name in lines]

    def delete_nodes(self, nodes: list[Node]) -> None:
        """Force-remove the node containers and the volumes labelled for them."""
        if not nodes:
            return
        names = [str(node) for node in nodes]
        try:
            run(["podman", "rm", "-f", "-v", *names])
        except RunError as err:
            raise RuntimeError("failed to delete nodes") from err
        volumes = [volume for name in names for volume in get_volumes(name)]
        if volumes:
            delete_volumes(volumes)

    def info(self) -> ProviderInfo:
        """Return the runtime capabilities, queried once and then cached."""
        if self._info is None:
            self._info = podman_info(self.logger)
        return self._info


def mount_fuse() -> bool:
    """Report whether /dev/fuse should be passed in (rootless podman)."""
    try:
        return podman_info(None).rootless
    except (RuntimeError, ValueError, OSError, AttributeError):
        return False