"""Nodes backed by containers of a docker-compatible runtime."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import IO, Any

from kindnodes.base import Node, RunError, output_lines, run
from kindnodes.docker_network import NODE_ROLE_LABEL_KEY


@dataclass
class NodeCommand:
    """A command executed inside a node container via ``<runtime> exec``.

    ``env`` holds ``KEY=VALUE`` entries, ``stdin`` may be bytes, text or a
    readable object, and ``timeout`` bounds the run in seconds.
    """

    runtime: str
    name_or_id: str
    command: str
    args: list[str] = field(default_factory=list)
    env: list[str] = field(default_factory=list)
    stdin: Any = None
    stdout: IO[Any] | None = None
    stderr: IO[Any] | None = None
    timeout: float | None = None

    def argv(self) -> list[str]:
        """Return the full runtime command line."""
        # privileged so commands can remount etc.
        argv = [self.runtime, "exec", "--privileged"]
        if self.stdin is not None:
            argv.append("-i")
        for entry in self.env:
            argv += ["-e", entry]
        argv += [self.name_or_id, self.command, *self.args]
        return argv

    def run(self) -> None:
        """Run the command, raising RunError if it fails."""
        run(
            self.argv(),
            stdin=self.stdin,
            stdout=self.stdout,
            stderr=self.stderr,
            timeout=self.timeout,
        )


@dataclass
class ContainerNode(Node):
    """A node that is a container managed by ``runtime`` (docker or podman)."""

    name: str
    runtime: str = "docker"

    def role(self) -> str:
        try:
            lines = output_lines([
                self.runtime, "inspect",
                "--format", f'{{{{ index .Config.Labels "{NODE_ROLE_LABEL_KEY}"}}}}',
                self.name,
            ])
        except RunError as err:
            raise RuntimeError("failed to get role for node") from err
        if len(lines) != 1:
            raise RuntimeError(f"failed to get role for node: output lines {len(lines)} != 1")
        return lines[0]

    def ip(self) -> tuple[str, str]:
        try:
            lines = output_lines([
                self.runtime, "inspect",
                "-f", "{{range .NetworkSettings.Networks}}{{.IPAddress}},{{.GlobalIPv6Address}}{{end}}",
                self.name,
            ])
        except RunError as err:
            raise RuntimeError("failed to get container details") from err
        if len(lines) != 1:
            raise RuntimeError(f"file should only be one line, got {len(lines)} lines")
        ips = lines[0].split(",")
        if len(ips) != 2:
            raise RuntimeError(f"container addresses should have 2 values, got {len(ips)} values")
        return ips[0], ips[1]

    def command(self, command: str, *args: str) -> NodeCommand:
        return NodeCommand(self.runtime, self.name, command, list(args))

    def serial_logs(self, writer: IO[Any]) -> None:
        run([self.runtime, "logs", self.name], stdout=writer, stderr=writer)