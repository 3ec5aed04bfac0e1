"""Error taxonomy for remote operations and the install lifecycle."""

from __future__ import annotations


class RemoteError(Exception):
    """Base class for every failure surfaced by the remote layer."""


class NotConnectedError(RemoteError):
    """Raised when a command is issued without an established session."""

    def __init__(self, message: str = "Not connected") -> None:
        super().__init__(message)


class RemoteConnectionError(RemoteError, ConnectionError):
    """SSH handshake or authentication failure."""


class CommandError(RemoteError):
    """A remote command exited with a non-zero status."""

    def __init__(
        self,
        command: str,
        exit_code: int | None,
        stderr: str = "",
    ) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        message = stderr.strip() or f"Command failed with code {exit_code}"
        super().__init__(message)


class TransferError(CommandError):
    """A fetch failed for a reason other than cancellation."""


class OperationCancelledError(RemoteError):
    """A streaming operation was terminated by an explicit cancel."""

    def __init__(self, operation_id: str) -> None:
        self.operation_id = operation_id
        super().__init__(f"Cancelled: {operation_id}")


class UnsafeArgumentError(RemoteError, ValueError):
    """A value was refused before being placed into a remote command line."""


class OperationInProgressError(RuntimeError):
    """Another lifecycle operation for the same game is still running."""

    def __init__(self, game_id: str) -> None:
        self.game_id = game_id
        super().__init__(f"An operation is already running for '{game_id}'")


class CatalogError(ValueError):
    """Catalog data failed validation at the load boundary."""
