"""Fake paramiko client / transport / channel for remote-layer tests."""

from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from romhost.models.connection import ConnectionDescriptor
from romhost.remote.session import RemoteSession


@dataclass
class _Rule:
    fragment: str
    events: list[tuple[str, bytes]]
    exit_status: int


class FakeChannel:
    """
    Replays a scripted sequence of stdout/stderr chunks, in order.

    An ``("exit", b"")`` event reports the exit status before the events
    after it have been delivered, the way sshd can send ``exit-status``
    ahead of the last data packets.
    """

    def __init__(self, transport: FakeTransport) -> None:
        self._transport = transport
        self.command: str | None = None
        self.events: list[tuple[str, bytes]] = []
        self.exit_status = 0
        self.exited = False
        self.closed = False

    def exec_command(self, command: str) -> None:
        self.command = command
        self._transport.commands.append(command)
        rule = self._transport.rule_for(command)
        if rule is not None:
            self.events = list(rule.events)
            self.exit_status = rule.exit_status

    def _next_is(self, kind: str) -> bool:
        return not self.closed and bool(self.events) and self.events[0][0] == kind

    def recv_ready(self) -> bool:
        return self._next_is("stdout")

    def recv(self, nbytes: int) -> bytes:
        return self.events.pop(0)[1]

    def recv_stderr_ready(self) -> bool:
        return self._next_is("stderr")

    def recv_stderr(self, nbytes: int) -> bytes:
        return self.events.pop(0)[1]

    def exit_status_ready(self) -> bool:
        if self._next_is("exit"):
            self.events.pop(0)
            self.exited = True
        return self.closed or self.exited or not self.events

    @property
    def eof_received(self) -> bool:
        return not any(kind != "exit" for kind, _ in self.events)

    def recv_exit_status(self) -> int:
        # Killed or closed before finishing: no exit-status was sent.
        if self.events and not self.exited:
            return -1
        return self.exit_status

    def close(self) -> None:
        self.closed = True


@dataclass
class FakeTransport:
    active: bool = True
    commands: list[str] = field(default_factory=list)
    channels: list[FakeChannel] = field(default_factory=list)
    rules: list[_Rule] = field(default_factory=list)

    def on(
        self,
        fragment: str,
        *,
        stdout: bytes = b"",
        stderr: list[bytes] | None = None,
        events: list[tuple[str, bytes]] | None = None,
        exit_status: int = 0,
    ) -> None:
        """Script the reply for commands containing *fragment* (latest rule wins)."""
        if events is None:
            events = []
            if stdout:
                events.append(("stdout", stdout))
            events.extend(("stderr", chunk) for chunk in stderr or [])
        self.rules.append(_Rule(fragment, events, exit_status))

    def rule_for(self, command: str) -> _Rule | None:
        for rule in reversed(self.rules):
            if rule.fragment in command:
                return rule
        return None

    def is_active(self) -> bool:
        return self.active

    def open_session(self) -> FakeChannel:
        channel = FakeChannel(self)
        self.channels.append(channel)
        return channel


class FakeSSHClient:
    def __init__(self, transport: FakeTransport, connect_error: Exception | None = None) -> None:
        self.transport = transport
        self.connect_error = connect_error
        self.connect_kwargs: dict | None = None
        self.policy = None
        self.connected = False
        self.closed = False

    def set_missing_host_key_policy(self, policy) -> None:
        self.policy = policy

    def connect(self, **kwargs) -> None:
        self.connect_kwargs = kwargs
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True
        self.transport.active = True

    def get_transport(self) -> FakeTransport | None:
        return self.transport if self.connected else None

    def close(self) -> None:
        self.closed = True
        self.connected = False
        self.transport.active = False


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def clients() -> list[FakeSSHClient]:
    return []


@pytest.fixture
def descriptor() -> ConnectionDescriptor:
    return ConnectionDescriptor(host="deck.local", username="deck", port=2222, secret="hunter2")


@pytest.fixture
def session(transport: FakeTransport, clients: list[FakeSSHClient], descriptor) -> RemoteSession:
    def _factory() -> FakeSSHClient:
        client = FakeSSHClient(transport)
        clients.append(client)
        return client

    s = RemoteSession(client_factory=_factory, poll_interval=0)
    s.connect(descriptor)
    return s
