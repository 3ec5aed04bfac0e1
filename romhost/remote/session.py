"""Remote session — one authenticated SSH connection over paramiko."""

from __future__ import annotations

import codecs
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

import paramiko
from loguru import logger

from romhost.errors import (
    CommandError,
    NotConnectedError,
    OperationCancelledError,
    RemoteConnectionError,
    RemoteError,
)
from romhost.models.connection import ConnectionDescriptor
from romhost.remote.commands import kill_group_command, with_pid_prefix

StderrListener = Callable[[str], None]

_CHUNK_SIZE = 32 * 1024
# Seconds a cancelled stream keeps reading while waiting for the remote pid.
_PID_WAIT = 2.0


@dataclass
class _StreamHandle:
    """A live streaming command, kept only while it runs."""

    on_stderr: StderrListener | None = None
    channel: paramiko.Channel | None = None
    pid: int | None = None
    cancelled_at: float | None = None
    killed: bool = False
    _stdout_head: str = field(default="", repr=False)

    @property
    def cancelled(self) -> bool:
        return self.cancelled_at is not None

    def feed_stdout(self, text: str) -> None:
        # First stdout line is the remote shell pid; the rest is ignored.
        if self.pid is not None or "\n" in self._stdout_head:
            return
        self._stdout_head += text
        first, sep, _ = self._stdout_head.partition("\n")
        if sep:
            try:
                self.pid = int(first.strip())
            except ValueError:
                logger.debug(f"Unexpected first stdout line: {first!r}")

    def should_stop(self) -> bool:
        # A cancel before the pid line keeps reading until the pid shows up.
        if self.cancelled_at is None:
            return False
        return self.pid is not None or time.monotonic() - self.cancelled_at > _PID_WAIT


class RemoteSession:
    """
    Owns a single SSH connection and runs shell commands on it.

    Commands are independent exec channels multiplexed over one transport,
    so several may run at the same time from different threads.  Streaming
    commands are tracked by operation id so they can be cancelled.
    """

    def __init__(
        self,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
        connect_timeout: float = 15.0,
        poll_interval: float = 0.05,
    ) -> None:
        self._client_factory = client_factory
        self._connect_timeout = connect_timeout
        self._poll_interval = poll_interval
        self._client: paramiko.SSHClient | None = None
        self._connected = False
        self._handles: dict[str, _StreamHandle] = {}
        self._lock = threading.Lock()

    # ── Connection lifecycle ──

    @property
    def is_connected(self) -> bool:
        """True while the transport is up; drops on remote-side termination."""
        if not self._connected or self._client is None:
            return False
        transport = self._client.get_transport()
        if transport is None or not transport.is_active():
            logger.info("SSH transport closed by remote host")
            self._connected = False
            return False
        return True

    def connect(self, descriptor: ConnectionDescriptor) -> None:
        """Open a fresh connection. Raises RemoteConnectionError on failure."""
        self.disconnect()

        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        use_password = bool(descriptor.secret)
        target = f"{descriptor.username}@{descriptor.host}:{descriptor.port}"
        logger.info(f"Connecting to {target}")
        try:
            client.connect(
                hostname=descriptor.host,
                port=descriptor.port,
                username=descriptor.username,
                password=descriptor.secret or None,
                timeout=self._connect_timeout,
                allow_agent=not use_password,
                look_for_keys=not use_password,
            )
        except paramiko.AuthenticationException as e:
            client.close()
            self._connected = False
            raise RemoteConnectionError(f"Authentication failed for {target}: {e}") from e
        except (paramiko.SSHException, OSError) as e:
            client.close()
            self._connected = False
            raise RemoteConnectionError(f"Cannot connect to {target}: {e}") from e

        self._client = client
        self._connected = True
        logger.info(f"Connected to {target}")

    def disconnect(self) -> None:
        """Close the connection. No-op when not connected."""
        if not self._connected or self._client is None:
            return
        self._client.close()
        self._connected = False
        logger.info("Disconnected")

    # ── Commands ──

    def execute(self, command: str) -> str:
        """Run *command*; return stdout on exit 0, raise CommandError otherwise."""
        channel = self._open_channel(command)
        stdout: list[str] = []
        stderr: list[str] = []
        try:
            self._pump(channel, stdout.append, stderr.append)
            code = channel.recv_exit_status()
        finally:
            channel.close()

        if code != 0:
            error_text = "".join(stderr)
            logger.warning(f"Command failed ({code}): {command}: {error_text.strip()}")
            raise CommandError(command, code, error_text)
        return "".join(stdout)

    def execute_streaming(
        self,
        operation_id: str,
        command: str,
        on_stderr: StderrListener | None = None,
    ) -> None:
        """
        Run a long command whose stderr is forwarded chunk by chunk.

        The command is registered under *operation_id* until it ends, so
        :meth:`cancel` can kill it.  Raises OperationCancelledError when it
        was cancelled and CommandError for any other non-zero exit.
        """
        handle = _StreamHandle(on_stderr=on_stderr)
        with self._lock:
            if operation_id in self._handles:
                raise RemoteError(f"Operation '{operation_id}' is already running")
            self._handles[operation_id] = handle

        stderr: list[str] = []

        def _on_stderr(text: str) -> None:
            stderr.append(text)
            listener = handle.on_stderr
            if listener is not None:
                listener(text)

        try:
            channel = self._open_channel(with_pid_prefix(command))
            handle.channel = channel
            self._pump(channel, handle.feed_stdout, _on_stderr, should_stop=handle.should_stop)
            if handle.cancelled:
                self._kill(operation_id, handle)
                code = None
            else:
                code = channel.recv_exit_status()
        finally:
            with self._lock:
                if self._handles.get(operation_id) is handle:
                    del self._handles[operation_id]
            if handle.channel is not None:
                handle.channel.close()

        if handle.cancelled:
            logger.info(f"Operation cancelled: {operation_id}")
            raise OperationCancelledError(operation_id)
        if code != 0:
            error_text = "".join(stderr)
            logger.warning(f"Streaming command failed ({code}): {command}")
            raise CommandError(command, code, error_text)

    def cancel(self, operation_id: str) -> None:
        """Kill a running streaming command. Unknown ids are ignored."""
        with self._lock:
            handle = self._handles.pop(operation_id, None)
        if handle is None:
            logger.debug(f"Nothing to cancel for '{operation_id}'")
            return

        handle.on_stderr = None
        handle.cancelled_at = time.monotonic()
        if handle.pid is None:
            # The streaming thread sends the kill once the pid line arrives.
            logger.debug(f"No remote pid yet for '{operation_id}', kill deferred")
        else:
            self._kill(operation_id, handle)
            if handle.channel is not None:
                try:
                    handle.channel.close()
                except (paramiko.SSHException, OSError, EOFError) as e:
                    logger.warning(f"Error closing cancelled stream '{operation_id}': {e}")
        logger.info(f"Cancel requested: {operation_id}")

    def active_operations(self) -> list[str]:
        with self._lock:
            return list(self._handles)

    # ── Internals ──

    def _kill(self, operation_id: str, handle: _StreamHandle) -> None:
        """Kill the remote process group once; no-op without a pid."""
        if handle.pid is None:
            logger.debug(f"No remote pid for '{operation_id}', closing channel only")
            return
        with self._lock:
            if handle.killed:
                return
            handle.killed = True
        try:
            self.execute(kill_group_command(handle.pid))
        except (RemoteError, ValueError) as e:
            logger.debug(f"Kill for '{operation_id}' reported: {e}")

    def _open_channel(self, command: str) -> paramiko.Channel:
        if not self.is_connected:
            raise NotConnectedError()
        assert self._client is not None
        transport = self._client.get_transport()
        logger.debug(f"$ {command}")
        try:
            channel = transport.open_session()
        except paramiko.SSHException as e:
            raise CommandError(command, None, str(e)) from e
        try:
            channel.exec_command(command)
        except paramiko.SSHException as e:
            channel.close()
            raise CommandError(command, None, str(e)) from e
        return channel

    def _pump(
        self,
        channel: paramiko.Channel,
        on_stdout: Callable[[str], None],
        on_stderr: Callable[[str], None],
        should_stop: Callable[[], bool] = lambda: False,
    ) -> None:
        """
        Drain both output streams until the command has exited and the
        remote side has sent EOF.

        ``exit-status`` can arrive before the last data packets, so an exit
        alone does not end the loop.
        """
        out_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        err_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        while not should_stop():
            progressed = False
            if channel.recv_stderr_ready():
                chunk = channel.recv_stderr(_CHUNK_SIZE)
                if chunk:
                    progressed = True
                    text = err_decoder.decode(chunk)
                    if text:
                        on_stderr(text)
            if channel.recv_ready():
                chunk = channel.recv(_CHUNK_SIZE)
                if chunk:
                    progressed = True
                    text = out_decoder.decode(chunk)
                    if text:
                        on_stdout(text)
            if progressed:
                continue
            if channel.exit_status_ready() and (channel.eof_received or channel.closed):
                break
            time.sleep(self._poll_interval)

        tail = err_decoder.decode(b"", final=True)
        if tail:
            on_stderr(tail)
        tail = out_decoder.decode(b"", final=True)
        if tail:
            on_stdout(tail)
