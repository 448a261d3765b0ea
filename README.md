# kindnodes

Manage the container "nodes" of a local cluster through the `docker` or
`podman` command-line tools. The package runs those tools as
subprocesses. It lists clusters and nodes by container label and runs
commands inside node containers. It manages the bridge network that the
nodes share and pulls node images. It also reports what the container
runtime supports.

## Installation

```
pip install kindnodes
```

The pure helpers work without either tool. Everything else needs `docker`
or `podman` on `PATH`.

## Providers

```python
from kindnodes.docker_provider import DockerProvider, is_available

if is_available():
    provider = DockerProvider()
    for cluster in provider.list_clusters():
        for node in provider.list_nodes(cluster):
            print(cluster, node, node.role(), node.ip())
    print(provider.info())
```

Each provider has these methods:

- `list_clusters()` returns the sorted, distinct cluster names found on node containers.
- `list_nodes(cluster)` returns `ContainerNode` objects.
- `delete_nodes(nodes)` force-removes the containers and their volumes.
- `info()` returns a `ProviderInfo`.

`ProviderInfo` has the fields `rootless`, `cgroup2`, `supports_memory_limit`,
`supports_pids_limit` and `supports_cpu_shares`. Each provider computes it
once and caches it.

`kindnodes.podman_provider.PodmanProvider` offers the same methods for
podman. It logs a warning when it is created, because podman support is
experimental. For podman, `delete_nodes` also removes the volumes that are
labelled with each node's name.

`kindnodes.podman_util.ensure_min_version()` raises `RuntimeError` when the
installed podman is older than 1.8.0.

Some functions work on output you already have, without calling a runtime:

- `kindnodes.docker_provider.parse_docker_info(data)` reads the output of `docker info --format '{{json .}}'`.
- `kindnodes.podman_provider.parse_podman_info(data, version, logger)` reads the output of `podman info --format json`.
- `kindnodes.podman_util.parse_podman_version(line)` reads a line such as `podman version 1.7.1-dev`.
- `kindnodes.podman_util.storage_needs_dev_mapper(data)` decides from `podman info` output whether `/dev/mapper` must be mounted.

Other functions ask the runtime about the host:

- `userns_remap()` in `kindnodes.docker_provider`.
- `mount_dev_mapper()` in `kindnodes.docker_provider` and in `kindnodes.podman_util`.
- `mount_fuse()` in `kindnodes.docker_provider` and in `kindnodes.podman_provider`.

## Running commands in a node

```python
import sys

node = provider.list_nodes("kind")[0]
node.command("cat", "/etc/os-release").run()
node.serial_logs(sys.stdout)
```

`ContainerNode.command` returns a `NodeCommand`. It is a dataclass with the
fields `env`, `stdin`, `stdout`, `stderr` and `timeout`, and you can set
them before calling `run()`. Its `argv()` shows the exact command line it
will run, for example `docker exec --privileged ...`.

When a command fails, the package raises `kindnodes.base.RunError`. Its
`output` holds the tool's stdout followed by its stderr, and its `stdout`
holds the stdout alone.

The same subprocess helpers are available directly as `run`, `output` and
`output_lines` in `kindnodes.base`.

## Networks

```python
from kindnodes.docker_network import ensure_network, generate_ula_subnet_from_name

ensure_network("kind")
generate_ula_subnet_from_name("kind", 0)   # 'fc00:f853:ccd:e793::/64'
```

### Docker

`kindnodes.docker_network.ensure_network` creates the named bridge network
if it is missing:

- The network gets an IPv6 ULA subnet derived from the network name.
- It uses the MTU of docker's default bridge network.
- If the subnet collides with an existing one, it probes further subnets, up to five attempts in total.
- If the daemon cannot set up IPv6, it falls back to IPv4 only.
- It removes duplicate networks that concurrent callers created. The network with the most attached containers is kept, and ties go to the lowest ID.

### Podman

`kindnodes.podman_network.ensure_network` checks whether the network exists
and creates it with the same name-derived subnets. If the subnet collides,
it probes up to five attempts in total. It falls back to IPv4 only when
podman does not know the `--ipv6` flag. It does not look for duplicate
networks.

## Images

```python
from kindnodes.podman_images import sanitize_image

sanitize_image("kindest/node:v1.21.1")
# ('kindest/node:v1.21.1', 'docker.io/kindest/node:v1.21.1')
```

`ensure_node_images(images)` exists in `kindnodes.docker_images` and in
`kindnodes.podman_images`. For each distinct image, in sorted order, it
checks whether the image is present locally and pulls it if it is not. A
failed pull is retried up to four times, waiting one second longer before
each retry.

## What this package does not do

This package does not create clusters. It has no function that:

- plans or starts node containers,
- works out API server endpoints,
- collects cluster logs into a directory,
- writes a kubeconfig.

It provides no command-line program; use it from Python.

## Development

```
pip install -e .[test]
pytest
```