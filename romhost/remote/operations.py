"""Remote operations — filesystem actions on the remote host."""

from __future__ import annotations

from typing import Callable

from loguru import logger

from romhost.errors import CommandError, RemoteError, TransferError
from romhost.remote import commands
from romhost.remote.session import RemoteSession

ProgressCallback = Callable[[int], None]


class RemoteOperations:
    """
    Domain-level actions built on a :class:`RemoteSession`.

    ``list_entries`` and ``path_exists`` are best-effort probes: any failure
    reads as "nothing there".  Everything else raises.
    """

    def __init__(self, session: RemoteSession) -> None:
        self._session = session

    # ── Probes ──

    def list_entries(self, directory: str) -> list[str]:
        """Names inside *directory*, or [] if it cannot be listed."""
        try:
            output = self._session.execute(commands.list_command(directory))
        except RemoteError as e:
            logger.debug(f"Listing '{directory}' failed, treating as empty: {e}")
            return []
        return commands.split_lines(output)

    def path_exists(self, path: str) -> bool:
        try:
            self._session.execute(commands.exists_command(path))
        except RemoteError:
            return False
        return True

    # ── Mutations ──

    def fetch_resource(
        self,
        operation_id: str,
        base_url: str,
        resource: str,
        destination_dir: str,
        file_name: str,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """
        Download ``base_url + resource`` into ``destination_dir/file_name``.

        The download resumes a partial file.  *on_progress* gets the latest
        percentage the downloader reported.  Raises OperationCancelledError
        after :meth:`cancel`, TransferError for any other failure.
        """
        url = commands.build_url(base_url, resource)
        command = commands.fetch_command(url, destination_dir, file_name)

        def _on_stderr(text: str) -> None:
            if on_progress is None:
                return
            percent = commands.parse_progress(text)
            if percent is not None:
                on_progress(percent)

        logger.info(f"Fetching {url} → {destination_dir}/{file_name}")
        try:
            self._session.execute_streaming(operation_id, command, _on_stderr)
        except CommandError as e:
            raise TransferError(e.command, e.exit_code, e.stderr) from e

    def cancel(self, operation_id: str) -> None:
        self._session.cancel(operation_id)

    def delete_entry(self, path: str) -> None:
        """Remove a file or directory tree. Missing paths are fine."""
        self._session.execute(commands.delete_command(path))
        logger.info(f"Deleted remote path: {path}")

    def expand_archive(self, archive_path: str, destination_dir: str) -> None:
        """Unzip into *destination_dir*, overwriting files already there."""
        self._session.execute(commands.mkdir_command(destination_dir))
        self._session.execute(commands.unzip_command(archive_path, destination_dir))
        logger.info(f"Extracted {archive_path} → {destination_dir}")
