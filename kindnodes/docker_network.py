"""Management of the docker network that the cluster nodes join."""

from __future__ import annotations

import hashlib
import ipaddress
import json
import struct
from dataclasses import dataclass, field

from kindnodes.base import RunError, output, output_lines, run

# applied to each node container for identification
CLUSTER_LABEL_KEY = "io.x-k8s.kind.cluster"
# applied to each node container for categorization by role
NODE_ROLE_LABEL_KEY = "io.x-k8s.kind.role"

# May be overridden by KIND_EXPERIMENTAL_DOCKER_NETWORK.
FIXED_NETWORK_NAME = "kind"

_MAX_ATTEMPTS = 5
_REGEXP_META = set("\\.+*?()|[]{}^$")


@dataclass
class NetworkInspectEntry:
    """The parts of ``docker network inspect`` output used for ordering."""

    id: str
    containers: dict[str, dict[str, str]] = field(default_factory=dict)


def _quote_meta(text: str) -> str:
    return "".join("\\" + ch if ch in _REGEXP_META else ch for ch in text)


def _name_filter(name: str) -> str:
    return f"--filter=name=^{_quote_meta(name)}$"


def ensure_network(name: str) -> None:
    """Make sure a docker network called ``name`` exists, creating it if needed."""
    if remove_duplicate_networks(name):
        return

    # unique ULA subnet per name, probing further subnets on collision
    subnet = generate_ula_subnet_from_name(name, 0)
    mtu = get_default_network_mtu()
    try:
        create_network_no_duplicates(name, subnet, mtu)
        return
    except RunError as err:
        if is_ipv6_unavailable_error(err):
            # IPAM is automatic for IPv4 only, one attempt is enough
            create_network_no_duplicates(name, "", mtu)
            return
        if not is_pool_overlap_error(err):
            raise
        # another process may have created the network meanwhile
        if check_if_network_exists(name):
            return

    for attempt in range(1, _MAX_ATTEMPTS):
        subnet = generate_ula_subnet_from_name(name, attempt)
        try:
            create_network_no_duplicates(name, subnet, mtu)
            return
        except RunError as err:
            if not is_pool_overlap_error(err):
                raise
            if check_if_network_exists(name):
                return
    raise RuntimeError("exhausted attempts trying to find a non-overlapping subnet")


def create_network_no_duplicates(name: str, ipv6_subnet: str = "", mtu: int = 0) -> None:
    """Create the network, tolerating a concurrent creation, then drop duplicates."""
    try:
        create_network(name, ipv6_subnet, mtu)
    except RunError as err:
        if not is_network_already_exists_error(err):
            raise
    remove_duplicate_networks(name)


def remove_duplicate_networks(name: str) -> bool:
    """Delete all but the preferred network named ``name``; return whether one exists."""
    networks = sorted_networks_with_name(name)
    if len(networks) > 1:
        try:
            delete_networks(*networks[1:])
        except RunError as err:
            if not is_only_error_no_such_network(err):
                raise
    return bool(networks)


def create_network(name: str, ipv6_subnet: str = "", mtu: int = 0) -> None:
    """Create a bridge network, with IPv6 when a subnet is given."""
    args = [
        "docker", "network", "create", "-d=bridge",
        "-o", "com.docker.network.bridge.enable_ip_masquerade=true",
    ]
    if mtu > 0:
        args += ["-o", f"com.docker.network.driver.mtu={mtu}"]
    if ipv6_subnet:
        args += ["--ipv6", "--subnet", ipv6_subnet]
    args.append(name)
    run(args)


def get_default_network_mtu() -> int:
    """Return the MTU of docker's default bridge network, or 0 if unknown."""
    try:
        lines = output_lines([
            "docker", "network", "inspect", "bridge",
            "-f", '{{ index .Options "com.docker.network.driver.mtu" }}',
        ])
    except (RunError, OSError):
        return 0
    if len(lines) != 1:
        return 0
    try:
        return int(lines[0])
    except ValueError:
        return 0


def sorted_networks_with_name(name: str) -> list[str]:
    """Return the IDs of networks named ``name`` in deterministic preference order."""
    ids = networks_with_name(name)
    if len(ids) < 2:
        return ids
    networks = sort_network_inspect_entries(inspect_networks(ids))
    return [network.id for network in networks]


def sort_network_inspect_entries(networks: list[NetworkInspectEntry]) -> list[NetworkInspectEntry]:
    """Order networks with attached containers first, then by ID."""
    return sorted(networks, key=lambda n: (-len(n.containers), n.id))


def parse_network_inspect(data: bytes | str) -> list[NetworkInspectEntry]:
    """Parse the JSON printed by ``docker network inspect``."""
    try:
        raw = json.loads(data or "null")
    except ValueError as exc:
        raise ValueError("failed to decode networks list") from exc
    return [
        NetworkInspectEntry(id=entry.get("Id", ""), containers=entry.get("Containers") or {})
        for entry in raw or []
    ]


def inspect_networks(network_ids: list[str]) -> list[NetworkInspectEntry]:
    """Inspect the given networks; ones that vanished meanwhile are left out."""
    try:
        data = output(["docker", "network", "inspect", *network_ids])
    except RunError as err:
        if not is_only_error_no_such_network(err):
            raise
        data = err.stdout
    return parse_network_inspect(data)


def networks_with_name(name: str) -> list[str]:
    """Return the IDs of networks named exactly ``name``."""
    out = output([
        "docker", "network", "ls",
        _name_filter(name),
        "--format={{.ID}}",
    ]).decode()
    cleaned = out.removesuffix("\n")
    if not cleaned:
        return []
    return cleaned.split("\n")


def check_if_network_exists(name: str) -> bool:
    """Report whether a network named ``name`` exists."""
    out = output([
        "docker", "network", "ls",
        _name_filter(name),
        "--format={{.Name}}",
    ]).decode()
    return out.startswith(name)


def delete_networks(*networks: str) -> None:
    """Remove the given networks."""
    run(["docker", "network", "rm", *networks])


def _output_text(err: BaseException) -> str | None:
    if not isinstance(err, RunError):
        return None
    return err.output.decode(errors="replace")


def is_ipv6_unavailable_error(err: BaseException) -> bool:
    text = _output_text(err)
    return text is not None and text.startswith(
        "Error response from daemon: Cannot read IPv6 setup for bridge"
    )


def is_pool_overlap_error(err: BaseException) -> bool:
    text = _output_text(err)
    return text is not None and (
        text.startswith("Error response from daemon: Pool overlaps with other one on this address space")
        or "networks have overlapping" in text
    )


def is_network_already_exists_error(err: BaseException) -> bool:
    text = _output_text(err)
    return (
        text is not None
        and text.startswith("Error response from daemon: network with name")
        and "already exists" in text
    )


def is_only_error_no_such_network(err: BaseException) -> bool:
    """True if every error line in the failed command's output is "No such network"."""
    if not isinstance(err, RunError):
        return False
    # only newline-terminated lines are considered
    for line in err.output.split(b"\n")[:-1]:
        text = line.decode(errors="replace")
        if text.startswith("Error: No such network:"):
            continue
        if text.startswith("Error: "):
            return False
    return True


def generate_ula_subnet_from_name(name: str, attempt: int = 0) -> str:
    """Derive a /64 in fc00::/8 from ``name`` and the probing ``attempt``."""
    digest = hashlib.sha1(name.encode() + struct.pack("<i", attempt)).digest()
    raw = bytes([0xFC, 0x00]) + digest[2:8] + bytes(8)
    return str(ipaddress.IPv6Network((raw, 64)))