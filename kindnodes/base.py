"""Node and provider abstractions shared by the container runtimes, plus command helpers."""

from __future__ import annotations

import abc
import subprocess
from dataclasses import dataclass
from typing import IO, Any, Sequence


@dataclass
class ProviderInfo:
    """Capabilities of the container runtime that hosts the nodes."""

    rootless: bool = False
    cgroup2: bool = False
    supports_memory_limit: bool = False
    supports_pids_limit: bool = False
    supports_cpu_shares: bool = False


class RunError(Exception):
    """A command exited unsuccessfully or timed out.

    ``output`` holds everything the command wrote (stdout then stderr),
    ``stdout`` only what it wrote to standard output.
    """

    def __init__(
        self,
        command: Sequence[str],
        output: bytes = b"",
        stdout: bytes = b"",
        returncode: int | None = None,
    ) -> None:
        self.command = list(command)
        self.output = output
        self.stdout = stdout
        self.returncode = returncode
        reason = f"exit status {returncode}" if returncode is not None else "timed out"
        super().__init__(f'command "{" ".join(self.command)}" failed with error: {reason}')


class Node(abc.ABC):
    """A cluster node: a container that commands can be run against."""

    name: str

    def __str__(self) -> str:
        return self.name

    @abc.abstractmethod
    def role(self) -> str:
        """Return the node's role label."""

    @abc.abstractmethod
    def ip(self) -> tuple[str, str]:
        """Return the node's (IPv4, IPv6) addresses."""

    @abc.abstractmethod
    def command(self, command: str, *args: str) -> Any:
        """Return a runnable command that executes inside the node."""

    @abc.abstractmethod
    def serial_logs(self, writer: IO[Any]) -> None:
        """Write the node container's logs to ``writer``."""


def _input_kwargs(stdin: Any) -> dict[str, Any]:
    if stdin is None:
        return {"stdin": subprocess.DEVNULL}
    data = stdin.read() if hasattr(stdin, "read") else stdin
    if isinstance(data, str):
        data = data.encode()
    return {"input": data}


def _execute(argv: list[str], stdin: Any = None, timeout: float | None = None) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=timeout,
            check=False,
            **_input_kwargs(stdin),
        )
    except subprocess.TimeoutExpired as exc:
        out = exc.stdout or b""
        err = exc.stderr or b""
        raise RunError(argv, out + err, stdout=out) from exc


def _check(argv: list[str], proc: subprocess.CompletedProcess) -> None:
    if proc.returncode != 0:
        out = proc.stdout or b""
        raise RunError(argv, out + (proc.stderr or b""), stdout=out, returncode=proc.returncode)


def _emit(writer: IO[Any], data: bytes) -> None:
    if not data:
        return
    try:
        writer.write(data)
    except TypeError:
        writer.write(data.decode(errors="replace"))


def run(
    args: Sequence[str],
    stdin: Any = None,
    stdout: IO[Any] | None = None,
    stderr: IO[Any] | None = None,
    timeout: float | None = None,
) -> None:
    """Run a command, copying its output to the given writers.

    ``stdin`` may be bytes, text or a readable object. Raises RunError
    when the command fails or exceeds ``timeout`` seconds.
    """
    argv = list(args)
    proc = _execute(argv, stdin, timeout)
    if stdout is not None:
        _emit(stdout, proc.stdout)
    if stderr is not None:
        _emit(stderr, proc.stderr)
    _check(argv, proc)


def output(args: Sequence[str]) -> bytes:
    """Run a command and return its standard output."""
    argv = list(args)
    proc = _execute(argv)
    _check(argv, proc)
    return proc.stdout


def output_lines(args: Sequence[str]) -> list[str]:
    """Run a command and return its standard output split into lines."""
    text = output(args).decode(errors="replace")
    if not text:
        return []
    lines = text.split("\n")
    if text.endswith("\n"):
        lines.pop()
    return [line.removesuffix("\r") for line in lines]