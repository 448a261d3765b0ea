"""Management of the podman network that the cluster nodes join."""

from __future__ import annotations

from kindnodes.base import RunError, output, run
from kindnodes.docker_network import (
    CLUSTER_LABEL_KEY,
    NODE_ROLE_LABEL_KEY,
    generate_ula_subnet_from_name,
)

__all__ = [
    "CLUSTER_LABEL_KEY",
    "NODE_ROLE_LABEL_KEY",
    "FIXED_NETWORK_NAME",
    "ensure_network",
    "create_network",
    "check_if_network_exists",
    "is_unknown_ipv6_flag_error",
    "is_pool_overlap_error",
]

# May be overridden by KIND_EXPERIMENTAL_PODMAN_NETWORK.
FIXED_NETWORK_NAME = "kind"

_MAX_ATTEMPTS = 5
_REGEXP_META = set("\\.+*?()|[]{}^$")


def _quote_meta(text: str) -> str:
    return "".join("\\" + ch if ch in _REGEXP_META else ch for ch in text)


def ensure_network(name: str) -> None:
    """Make sure a podman network called ``name`` exists, creating it if needed.

    IPv6 networks need podman 2.2.0 or newer; older versions get IPv4 only.
    """
    if check_if_network_exists(name):
        return

    # unique ULA subnet per name, probing further subnets on collision
    try:
        create_network(name, generate_ula_subnet_from_name(name, 0))
        return
    except RunError as err:
        if is_unknown_ipv6_flag_error(err):
            create_network(name, "")
            return
        if not is_pool_overlap_error(err):
            raise

    for attempt in range(1, _MAX_ATTEMPTS):
        try:
            create_network(name, generate_ula_subnet_from_name(name, attempt))
            return
        except RunError as err:
            if not is_pool_overlap_error(err):
                raise
    raise RuntimeError("exhausted attempts trying to find a non-overlapping subnet")


def create_network(name: str, ipv6_subnet: str = "") -> None:
    """Create a bridge network, with IPv6 when a subnet is given."""
    args = ["podman", "network", "create", "-d=bridge"]
    if ipv6_subnet:
        args += ["--ipv6", "--subnet", ipv6_subnet]
    args.append(name)
    run(args)


def check_if_network_exists(name: str) -> bool:
    """Report whether podman can inspect a network named ``name``."""
    try:
        output(["podman", "network", "inspect", _quote_meta(name)])
    except (RunError, OSError):
        return False
    return True


def _output_text(err: BaseException) -> str | None:
    if not isinstance(err, RunError):
        return None
    return err.output.decode(errors="replace")


def is_unknown_ipv6_flag_error(err: BaseException) -> bool:
    text = _output_text(err)
    return text is not None and "unknown flag: --ipv6" in text


def is_pool_overlap_error(err: BaseException) -> bool:
    text = _output_text(err)
    return text is not None and (
        "is being used by a network interface" in text
        or "is already being used by a cni configuration" in text
    )