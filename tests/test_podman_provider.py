import json
import logging
import subprocess
from unittest.mock import patch

import pytest

from kindnodes.base import ProviderInfo
from kindnodes.node import ContainerNode
from kindnodes.podman_provider import (
    PodmanProvider,
    mount_fuse,
    parse_podman_info,
    podman_info,
)
from kindnodes.podman_util import parse_podman_version


class FakeRunner:
    """Stands in for subprocess.run, answering via a responder function."""

    def __init__(self, responder):
        self.responder = responder
        self.calls = []

    def __call__(self, argv, **kwargs):
        self.calls.append(list(argv))
        out, rc = self.responder(list(argv))
        return subprocess.CompletedProcess(argv, rc, stdout=out, stderr=b"")


def _info_json(rootless=False, cgroup="v2", controllers=None):
    host = {"cgroupVersion": cgroup, "security": {"rootless": rootless}}
    if controllers is not None:
        host["cgroupControllers"] = controllers
    return json.dumps({"host": host}).encode()


def _podman(info_data, version="4.1.0", info_rc=0):
    def respond(argv):
        if argv[:2] == ["podman", "info"]:
            return info_data, info_rc
        if argv[:2] == ["podman", "--version"]:
            return f"podman version {version}\n".encode(), 0
        return b"", 0

    return FakeRunner(respond)


def test_parse_info_new_version_reads_controllers():
    info = parse_podman_info(
        _info_json(rootless=True, controllers=["memory", "pids"]),
        parse_podman_version("podman version 4.0.0"),
    )
    assert info == ProviderInfo(
        rootless=True,
        cgroup2=True,
        supports_memory_limit=True,
        supports_pids_limit=True,
        supports_cpu_shares=False,
    )


def test_parse_info_old_version_assumes_all_controllers():
    info = parse_podman_info(
        _info_json(cgroup="v1", controllers=[]),
        parse_podman_version("podman version 3.4.2"),
    )
    assert info.cgroup2 is False
    assert info.supports_memory_limit
    assert info.supports_pids_limit
    assert info.supports_cpu_shares


def test_parse_info_rootless_old_version_warns(caplog):
    logger = logging.getLogger("podman-test")
    with caplog.at_level(logging.WARNING, logger="podman-test"):
        info = parse_podman_info(
            _info_json(rootless=True), parse_podman_version("podman version 3.0.0"), logger
        )
    assert info.rootless is True
    assert any("Delegate=yes" in record.getMessage() for record in caplog.records)


def test_parse_info_rootless_new_version_does_not_warn(caplog):
    logger = logging.getLogger("podman-test-new")
    with caplog.at_level(logging.WARNING, logger="podman-test-new"):
        info = parse_podman_info(
            _info_json(rootless=True, controllers=["cpu"]),
            parse_podman_version("podman version 4.2.0"),
            logger,
        )
    assert info.supports_cpu_shares is True
    assert caplog.records == []


def test_parse_info_invalid_json():
    with pytest.raises(ValueError):
        parse_podman_info(b"not json", parse_podman_version("podman version 4.0.0"))


def test_podman_info_queries_runtime():
    fake = _podman(_info_json(rootless=True, controllers=["memory", "pids", "cpu"]))
    with patch("subprocess.run", fake):
        info = podman_info(None)
    assert info.rootless and info.supports_cpu_shares
    assert ["podman", "info", "--format", "json"] in fake.calls


def test_podman_info_failure_raises():
    fake = _podman(b"boom", info_rc=1)
    with patch("subprocess.run", fake):
        with pytest.raises(RuntimeError, match="failed to get podman info"):
            podman_info(None)


def test_podman_info_bad_version_raises():
    fake = _podman(_info_json(), version="garbage")
    with patch("subprocess.run", fake):
        with pytest.raises(RuntimeError, match="failed to check podman version"):
            podman_info(None)


def test_provider_info_is_cached():
    fake = _podman(_info_json(controllers=["memory"]))
    with patch("subprocess.run", fake):
        provider = PodmanProvider()
        first = provider.info()
        second = provider.info()
    assert first is second
    info_calls = [call for call in fake.calls if call[:2] == ["podman", "info"]]
    assert len(info_calls) == 1


def test_provider_str_and_warning(caplog):
    logger = logging.getLogger("podman-provider-test")
    with caplog.at_level(logging.WARNING, logger="podman-provider-test"):
        provider = PodmanProvider(logger)
    assert str(provider) == "podman"
    assert "enabling experimental podman provider" in caplog.text


def test_list_clusters_sorted_unique():
    fake = FakeRunner(lambda argv: (b"zeta\nkind\nzeta\n", 0))
    with patch("subprocess.run", fake):
        clusters = PodmanProvider().list_clusters()
    assert clusters == ["kind", "zeta"]
    assert '{{index .Labels "io.x-k8s.kind.cluster"}}' in fake.calls[0]


def test_list_clusters_failure():
    fake = FakeRunner(lambda argv: (b"", 1))
    with patch("subprocess.run", fake):
        with pytest.raises(RuntimeError, match="failed to list clusters"):
            PodmanProvider().list_clusters()


def test_list_nodes_returns_podman_nodes():
    fake = FakeRunner(lambda argv: (b"kind-control-plane\nkind-worker\n", 0))
    with patch("subprocess.run", fake):
        nodes = PodmanProvider().list_nodes("kind")
    assert nodes == [
        ContainerNode("kind-control-plane", "podman"),
        ContainerNode("kind-worker", "podman"),
    ]
    assert "label=io.x-k8s.kind.cluster=kind" in fake.calls[0]


def test_delete_nodes_empty_runs_nothing():
    fake = FakeRunner(lambda argv: (b"", 0))
    with patch("subprocess.run", fake):
        assert PodmanProvider().delete_nodes([]) is None
    assert fake.calls == []


def test_delete_nodes_removes_containers_and_volumes():
    def respond(argv):
        if argv[:3] == ["podman", "volume", "ls"]:
            label = argv[argv.index("--filter") + 1].removeprefix("label=")
            return f"{label}-vol\n".encode(), 0
        return b"", 0

    fake = FakeRunner(respond)
    nodes = [ContainerNode("a", "podman"), ContainerNode("b", "podman")]
    with patch("subprocess.run", fake):
        assert PodmanProvider().delete_nodes(nodes) is None
    assert fake.calls[0] == ["podman", "rm", "-f", "-v", "a", "b"]
    assert fake.calls[-1] == ["podman", "volume", "rm", "--force", "a-vol", "b-vol"]


def test_delete_nodes_without_volumes_skips_volume_rm():
    fake = FakeRunner(lambda argv: (b"", 0))
    with patch("subprocess.run", fake):
        assert PodmanProvider().delete_nodes([ContainerNode("a", "podman")]) is None
    assert all(call[:3] != ["podman", "volume", "rm"] for call in fake.calls)
    assert len(fake.calls) == 2


def test_delete_nodes_failure():
    fake = FakeRunner(lambda argv: (b"", 1))
    with patch("subprocess.run", fake):
        with pytest.raises(RuntimeError, match="failed to delete nodes"):
            PodmanProvider().delete_nodes([ContainerNode("a", "podman")])


def test_mount_fuse_rootless():
    fake = _podman(_info_json(rootless=True, controllers=[]))
    with patch("subprocess.run", fake):
        assert mount_fuse() is True


def test_mount_fuse_false_on_failure():
    fake = _podman(b"", info_rc=1)
    with patch("subprocess.run", fake):
        assert mount_fuse() is False