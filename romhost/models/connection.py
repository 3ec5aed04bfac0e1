"""SSH connection descriptor."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ConnectionDescriptor:
    """Where and as whom to connect. The secret lives only for one session."""

    host: str
    username: str
    port: int = 22
    secret: str = field(default="", repr=False)

    def public_fields(self) -> dict[str, str | int]:
        """Config-cacheable fields (everything but the secret)."""
        return {"sshHost": self.host, "sshPort": self.port, "sshUser": self.username}
