"""OpenOCD-backed device programmer.

The ``init`` command launches ``openocd`` with the board configuration; the
server initialises the adapter and target at the end of its configuration
stage and then starts listening for TCL RPC connections, so a reachable RPC
port means ``init`` succeeded. Every later command is sent over that
connection, wrapped in ``catch`` so its status can be read back, except
``shutdown``, which succeeds on any reply or on the server hanging up.
Commands and replies on the RPC socket are terminated by ``0x1a``.
"""

from __future__ import annotations

import os
import shutil
import socket
import subprocess
import tempfile
import time
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO

from embpipe.models import CommandResult
from embpipe.runner import COMMAND_NOT_FOUND

RPC_TERMINATOR = b"\x1a"
DEFAULT_TCL_PORT = 6666


class TclRpcClient:
    """Minimal client for OpenOCD's TCL RPC server."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._buffer = b""

    @classmethod
    def connect(cls, host: str, port: int, *, timeout: float | None = None) -> TclRpcClient:
        sock = socket.create_connection((host, port), timeout=timeout)
        # Adapter commands such as a full-chip erase block for a long time.
        sock.settimeout(None)
        return cls(sock)

    def call(self, script: str) -> str:
        self._sock.sendall(script.encode("utf-8") + RPC_TERMINATOR)
        while RPC_TERMINATOR not in self._buffer:
            chunk = self._sock.recv(4096)
            if not chunk:
                raise ConnectionError("OpenOCD closed the RPC connection.")
            self._buffer += chunk
        reply, _, self._buffer = self._buffer.partition(RPC_TERMINATOR)
        return reply.decode("utf-8", errors="replace")

    def close(self) -> None:
        with suppress(OSError):
            self._sock.close()


def batch_command(binary: str, board_config: str, commands: list[str]) -> list[str]:
    """One-shot ``openocd -f <board> -c <cmd>...`` equivalent of a session."""
    argv = [binary, "-f", board_config]
    for command in commands:
        argv.extend(["-c", command])
    return argv


def catch_script(command: str) -> str:
    """Wrap *command* so the reply reads ``<status> <message>``."""
    return (
        f"set _embpipe_rc [catch {{{command}}} _embpipe_msg]; "
        'format "%d %s" $_embpipe_rc $_embpipe_msg'
    )


@dataclass(slots=True)
class OpenOcdProgrammer:
    name: str = "openocd"
    binary: str = "openocd"
    host: str = "127.0.0.1"
    tcl_port: int = DEFAULT_TCL_PORT
    startup_timeout: float = 15.0
    extra_args: list[str] = field(default_factory=list)
    board_config: str | None = field(default=None, init=False)
    _process: subprocess.Popen[str] | None = field(default=None, init=False, repr=False)
    _client: TclRpcClient | None = field(default=None, init=False, repr=False)
    _output: IO[str] | None = field(default=None, init=False, repr=False)
    _output_path: Path | None = field(default=None, init=False, repr=False)

    def launch_command(self, board_config: str) -> list[str]:
        return [
            self.binary,
            "-f",
            board_config,
            "-c",
            f"tcl_port {self.tcl_port}",
            "-c",
            "gdb_port disabled",
            "-c",
            "telnet_port disabled",
            *self.extra_args,
        ]

    def open(self, board_config: str) -> None:
        self.board_config = board_config

    def execute(self, command: str) -> CommandResult:
        if command == "init":
            return self._launch()
        if self._client is None:
            return CommandResult(
                returncode=1,
                stderr="OpenOCD is not running; `init` must succeed first.\n",
            )
        if command == "shutdown":
            # The server answers shutdown with a close-connection status, never 0.
            with suppress(OSError):
                self._client.call(command)
            return CommandResult(returncode=0)
        try:
            reply = self._client.call(catch_script(command))
        except OSError as exc:
            return CommandResult(
                returncode=self._exit_status(),
                stderr=f"{exc}\n{self._output_tail()}",
            )
        status, _, message = reply.partition(" ")
        try:
            returncode = int(status)
        except ValueError:
            return CommandResult(returncode=1, stderr=reply)
        if returncode != 0:
            return CommandResult(returncode=returncode, stderr=message)
        return CommandResult(returncode=0, stdout=message)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
        if self._process is not None:
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.terminate()
                try:
                    self._process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    self._process.kill()
                    self._process.wait()
            self._process = None
        if self._output is not None:
            self._output.close()
            self._output = None
        if self._output_path is not None:
            self._output_path.unlink(missing_ok=True)
            self._output_path = None

    def _launch(self) -> CommandResult:
        if self.board_config is None:
            return CommandResult(
                returncode=1,
                stderr="No board configuration; call open() first.\n",
            )
        if shutil.which(self.binary) is None:
            return CommandResult(
                returncode=COMMAND_NOT_FOUND,
                stderr=f"{self.binary}: command not found\n",
            )
        if self._port_in_use():
            return CommandResult(
                returncode=1,
                stderr=(
                    f"Another debug server already listens on {self.host}:{self.tcl_port}; "
                    "the adapter is in use.\n"
                ),
            )

        # A file rather than a pipe, so a chatty server never blocks on a full buffer.
        fd, name = tempfile.mkstemp(prefix="embpipe-openocd-", suffix=".log")
        os.close(fd)
        self._output_path = Path(name)
        self._output = self._output_path.open("w", encoding="utf-8")
        self._process = subprocess.Popen(
            self.launch_command(self.board_config),
            stdout=self._output,
            stderr=subprocess.STDOUT,
            text=True,
        )

        deadline = time.monotonic() + self.startup_timeout
        while True:
            if self._process.poll() is not None:
                return CommandResult(
                    returncode=self._process.returncode or 1,
                    stderr=self._output_tail(),
                )
            try:
                self._client = TclRpcClient.connect(self.host, self.tcl_port, timeout=1.0)
            except OSError:
                if time.monotonic() >= deadline:
                    self._process.terminate()
                    return CommandResult(
                        returncode=1,
                        stderr=f"Timed out waiting for OpenOCD.\n{self._output_tail()}",
                    )
                time.sleep(0.1)
                continue
            return CommandResult(returncode=0, stdout=self._output_tail())

    def _port_in_use(self) -> bool:
        try:
            probe = socket.create_connection((self.host, self.tcl_port), timeout=0.5)
        except OSError:
            return False
        probe.close()
        return True

    def _exit_status(self) -> int:
        if self._process is not None and self._process.poll() is not None:
            return self._process.returncode or 1
        return 1

    def _output_tail(self, limit: int = 2000) -> str:
        if self._output_path is None or not self._output_path.exists():
            return ""
        return self._output_path.read_text(encoding="utf-8", errors="replace")[-limit:]
