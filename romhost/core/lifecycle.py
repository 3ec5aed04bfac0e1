"""Lifecycle orchestrator — download / extract / delete / reconcile per game."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator

from loguru import logger

from romhost.data.library_store import LibraryStore
from romhost.errors import OperationCancelledError, OperationInProgressError, RemoteError
from romhost.models.catalog import CatalogSource, GameEntry
from romhost.models.library import GameStatus, status_after_delete, status_from_presence
from romhost.remote.operations import RemoteOperations

ProgressListener = Callable[[str, int], None]

# Extracted folders with names this short are never removed.
MIN_FOLDER_NAME_LENGTH = 3


@dataclass
class ReconcileResult:
    """Outcome of a reconcile pass."""

    changed: dict[str, GameStatus] = field(default_factory=dict)
    unchanged: list[str] = field(default_factory=list)


class LifecycleOrchestrator:
    """
    Install lifecycle state machine.

    ::

        NOT_INSTALLED → DOWNLOADING → DOWNLOADED → EXTRACTING → EXTRACTED
              ↑ fail/cancel ┘               ↑ fail ┘

    Uses *RemoteOperations* for the remote side and *LibraryStore* to
    persist every transition.  Operations on one game id are serialised:
    a second call while one is running raises OperationInProgressError.
    """

    def __init__(self, operations: RemoteOperations, store: LibraryStore) -> None:
        self._ops = operations
        self._store = store
        self._busy: set[str] = set()
        self._busy_lock = threading.Lock()

    # ── Single-flight guard ──

    @contextmanager
    def _exclusive(self, game_id: str) -> Iterator[None]:
        with self._busy_lock:
            if game_id in self._busy:
                raise OperationInProgressError(game_id)
            self._busy.add(game_id)
        try:
            yield
        finally:
            with self._busy_lock:
                self._busy.discard(game_id)

    def is_busy(self, game_id: str) -> bool:
        with self._busy_lock:
            return game_id in self._busy

    def busy_ids(self) -> set[str]:
        with self._busy_lock:
            return set(self._busy)

    # ── Status ──

    def status_of(self, game_id: str) -> GameStatus:
        return self._store.get_status(game_id)

    def statuses(self, games: Iterable[GameEntry]) -> dict[str, GameStatus]:
        return {game.id: self._store.get_status(game.id) for game in games}

    def _transition(self, game: GameEntry, status: GameStatus) -> None:
        previous = self._store.get_status(game.id)
        self._store.set_status(game.id, status)
        logger.info(f"{game.name}: {previous} → {status}")

    # ── Download ──

    def download(
        self,
        source: CatalogSource,
        game: GameEntry,
        operation_id: str | None = None,
        on_progress: ProgressListener | None = None,
    ) -> None:
        """
        Fetch the game's archive into the source's archive directory.

        Ends in DOWNLOADED, or back in NOT_INSTALLED when the fetch fails or
        is cancelled (the error is re-raised).  *on_progress* receives
        ``(operation_id, percent)``.
        """
        op_id = operation_id or game.id
        with self._exclusive(game.id):
            self._transition(game, GameStatus.DOWNLOADING)

            def _progress(percent: int) -> None:
                if on_progress is not None:
                    on_progress(op_id, percent)

            try:
                self._ops.fetch_resource(
                    op_id,
                    game.resource_base(),
                    game.url,
                    source.zip_path,
                    game.zip,
                    _progress,
                )
            except OperationCancelledError:
                logger.info(f"Download cancelled: {game.name}")
                self._transition(game, GameStatus.NOT_INSTALLED)
                raise
            except (RemoteError, ValueError) as e:
                logger.error(f"Download failed for {game.name}: {e}")
                self._transition(game, GameStatus.NOT_INSTALLED)
                raise

            self._transition(game, GameStatus.DOWNLOADED)

    def cancel_download(self, game: GameEntry, operation_id: str | None = None) -> None:
        """Ask the running download to stop; ``download`` does the status revert."""
        self._ops.cancel(operation_id or game.id)

    # ── Extract ──

    def extract(self, source: CatalogSource, game: GameEntry) -> None:
        """Unzip the archive into the install directory; DOWNLOADED on failure."""
        with self._exclusive(game.id):
            self._transition(game, GameStatus.EXTRACTING)
            try:
                self._ops.expand_archive(source.archive_path(game), source.base_path)
            except (RemoteError, ValueError) as e:
                logger.error(f"Extraction failed for {game.name}: {e}")
                self._transition(game, GameStatus.DOWNLOADED)
                raise
            self._transition(game, GameStatus.EXTRACTED)

    # ── Delete ──

    def delete_data(
        self,
        source: CatalogSource,
        game: GameEntry,
        delete_archive: bool,
        delete_extracted_folder: bool,
    ) -> GameStatus:
        """
        Remove the archive and/or the extracted folder; return the new status.

        The folder is only removed when its name has at least
        ``MIN_FOLDER_NAME_LENGTH`` characters, so an empty catalog value can
        never point the delete at the install root.  A name that is not a plain
        file name raises UnsafeArgumentError before anything is removed.  A
        failed delete leaves the status untouched and re-raises.
        """
        with self._exclusive(game.id):
            current = self._store.get_status(game.id)
            if not delete_archive and not delete_extracted_folder:
                return current

            # Resolve every target first so a bad name deletes nothing.
            targets: list[str] = []
            if delete_archive:
                targets.append(source.archive_path(game))
            if delete_extracted_folder:
                if len(game.folder.strip()) >= MIN_FOLDER_NAME_LENGTH:
                    targets.append(source.folder_path(game))
                else:
                    logger.warning(
                        f"Not deleting folder of {game.name}: name {game.folder!r} is too short"
                    )
            for path in targets:
                self._ops.delete_entry(path)

            status = status_after_delete(current, delete_archive, delete_extracted_folder)
            self._transition(game, status)
            return status

    def check_installed(self, source: CatalogSource, game: GameEntry) -> bool:
        """Whether the extracted folder exists on the remote host."""
        if not game.folder.strip():
            return False
        return self._ops.path_exists(source.folder_path(game))

    # ── Reconcile ──

    def reconcile(
        self, source: CatalogSource, games: Iterable[GameEntry] | None = None
    ) -> ReconcileResult:
        """
        Re-derive every game's status from the remote directories.

        Lists the archive and install directories once each; only statuses
        that differ from the stored ones are written.  Games with an
        operation in flight are left alone.
        """
        archives = set(self._ops.list_entries(source.zip_path))
        folders = set(self._ops.list_entries(source.base_path))
        result = ReconcileResult()

        for game in source.games if games is None else games:
            if self.is_busy(game.id):
                logger.debug(f"Reconcile skips busy game '{game.id}'")
                result.unchanged.append(game.id)
                continue
            has_folder = bool(game.folder) and game.folder in folders
            status = status_from_presence(game.zip in archives, has_folder)
            if self._store.get_status(game.id) == status:
                result.unchanged.append(game.id)
                continue
            self._transition(game, status)
            result.changed[game.id] = status

        logger.info(
            f"Reconcile '{source.name}' — {len(result.changed)} changed, "
            f"{len(result.unchanged)} unchanged"
        )
        return result
