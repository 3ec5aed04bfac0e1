"""Tests for the LifecycleOrchestrator state machine."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from romhost.core.lifecycle import LifecycleOrchestrator
from romhost.data.library_store import LibraryStore
from romhost.errors import (
    CommandError,
    OperationCancelledError,
    OperationInProgressError,
    TransferError,
    UnsafeArgumentError,
)
from romhost.models.catalog import CatalogSource, GameEntry
from romhost.models.library import GameStatus
from romhost.remote.operations import RemoteOperations
from romhost.remote.session import RemoteSession


@pytest.fixture
def game() -> GameEntry:
    return GameEntry(id="g1", name="Mario", zip="mario.zip", url="/download/m/mario.zip", folder="mario")


@pytest.fixture
def source(game: GameEntry) -> CatalogSource:
    return CatalogSource(name="nes", base_path="/data/games", zip_path="/data/zips", games=(game,))


@pytest.fixture
def store(tmp_path: Path) -> LibraryStore:
    s = LibraryStore(tmp_path)
    s.load()
    return s


@pytest.fixture
def ops() -> MagicMock:
    return MagicMock(spec=RemoteOperations)


@pytest.fixture
def orchestrator(ops: MagicMock, store: LibraryStore) -> LifecycleOrchestrator:
    return LifecycleOrchestrator(ops, store)


class TestDownload:
    def test_success(self, orchestrator, ops, store, source, game) -> None:
        seen_during: list[GameStatus] = []
        ops.fetch_resource.side_effect = lambda *a: seen_during.append(store.get_status("g1"))

        orchestrator.download(source, game)

        assert seen_during == [GameStatus.DOWNLOADING]
        assert store.get_status("g1") == GameStatus.DOWNLOADED
        ops.fetch_resource.assert_called_once()
        args = ops.fetch_resource.call_args.args
        assert args[:5] == ("g1", "https://archive.org", "/download/m/mario.zip", "/data/zips", "mario.zip")

    def test_absolute_url_has_no_base(self, orchestrator, ops, source) -> None:
        game = GameEntry(id="g2", name="Z", zip="z.zip", url="https://mirror.example/z.zip", folder="z")
        orchestrator.download(source, game)
        assert ops.fetch_resource.call_args.args[1] == ""

    def test_failure_reverts(self, orchestrator, ops, store, source, game) -> None:
        ops.fetch_resource.side_effect = TransferError("wget", 4, "network failure")
        with pytest.raises(TransferError):
            orchestrator.download(source, game)
        assert store.get_status("g1") == GameStatus.NOT_INSTALLED
        assert not orchestrator.is_busy("g1")

    def test_cancel_reverts(self, orchestrator, ops, store, source, game) -> None:
        ops.fetch_resource.side_effect = OperationCancelledError("g1")
        with pytest.raises(OperationCancelledError):
            orchestrator.download(source, game)
        assert store.get_status("g1") == GameStatus.NOT_INSTALLED

    def test_custom_operation_id_and_progress(self, orchestrator, ops, source, game) -> None:
        def _fetch(op_id, base, resource, dest, name, on_progress):
            on_progress(30)
            on_progress(90)

        ops.fetch_resource.side_effect = _fetch
        events: list[tuple[str, int]] = []
        orchestrator.download(source, game, operation_id="dl-7", on_progress=lambda *e: events.append(e))
        assert ops.fetch_resource.call_args.args[0] == "dl-7"
        assert events == [("dl-7", 30), ("dl-7", 90)]

    def test_cancel_download_delegates_without_status_change(self, orchestrator, ops, store, game) -> None:
        store.set_status("g1", GameStatus.DOWNLOADING)
        orchestrator.cancel_download(game)
        ops.cancel.assert_called_once_with("g1")
        assert store.get_status("g1") == GameStatus.DOWNLOADING


class TestExtract:
    def test_success(self, orchestrator, ops, store, source, game) -> None:
        store.set_status("g1", GameStatus.DOWNLOADED)
        orchestrator.extract(source, game)
        ops.expand_archive.assert_called_once_with("/data/zips/mario.zip", "/data/games")
        assert store.get_status("g1") == GameStatus.EXTRACTED

    def test_failure_reverts_to_downloaded(self, orchestrator, ops, store, source, game) -> None:
        store.set_status("g1", GameStatus.DOWNLOADED)
        ops.expand_archive.side_effect = CommandError("unzip", 9, "not a zipfile")
        with pytest.raises(CommandError):
            orchestrator.extract(source, game)
        assert store.get_status("g1") == GameStatus.DOWNLOADED


class TestDeleteData:
    @pytest.mark.parametrize("prior", list(GameStatus))
    def test_both_always_not_installed(self, orchestrator, store, source, game, prior) -> None:
        store.set_status("g1", prior)
        assert orchestrator.delete_data(source, game, True, True) == GameStatus.NOT_INSTALLED
        assert store.get_status("g1") == GameStatus.NOT_INSTALLED

    def test_archive_only_from_extracted(self, orchestrator, ops, store, source, game) -> None:
        store.set_status("g1", GameStatus.EXTRACTED)
        assert orchestrator.delete_data(source, game, True, False) == GameStatus.EXTRACTED_NO_ZIP
        ops.delete_entry.assert_called_once_with("/data/zips/mario.zip")

    def test_archive_only_from_downloaded(self, orchestrator, store, source, game) -> None:
        store.set_status("g1", GameStatus.DOWNLOADED)
        assert orchestrator.delete_data(source, game, True, False) == GameStatus.NOT_INSTALLED

    def test_folder_only_from_extracted(self, orchestrator, ops, store, source, game) -> None:
        store.set_status("g1", GameStatus.EXTRACTED)
        assert orchestrator.delete_data(source, game, False, True) == GameStatus.DOWNLOADED
        ops.delete_entry.assert_called_once_with("/data/games/mario")

    def test_folder_from_extracted_no_zip(self, orchestrator, store, source, game) -> None:
        store.set_status("g1", GameStatus.EXTRACTED_NO_ZIP)
        assert orchestrator.delete_data(source, game, False, True) == GameStatus.NOT_INSTALLED

    def test_neither_is_noop(self, orchestrator, ops, store, source, game) -> None:
        store.set_status("g1", GameStatus.EXTRACTED)
        assert orchestrator.delete_data(source, game, False, False) == GameStatus.EXTRACTED
        ops.delete_entry.assert_not_called()

    @pytest.mark.parametrize("folder", ["", "a", "..", "  "])
    def test_short_folder_name_never_deleted(self, orchestrator, ops, store, source, folder) -> None:
        game = GameEntry(id="g9", name="Odd", zip="odd.zip", url="/odd.zip", folder=folder)
        store.set_status("g9", GameStatus.EXTRACTED)
        orchestrator.delete_data(source, game, True, True)
        ops.delete_entry.assert_called_once_with("/data/zips/odd.zip")
        assert store.get_status("g9") == GameStatus.NOT_INSTALLED

    def test_traversal_names_delete_nothing(self, store, source) -> None:
        session = MagicMock(spec=RemoteSession)
        orchestrator = LifecycleOrchestrator(RemoteOperations(session), store)
        game = GameEntry(id="g6", name="Up", zip="up.zip", url="/up.zip", folder="../..")
        store.set_status("g6", GameStatus.EXTRACTED)

        with pytest.raises(UnsafeArgumentError):
            orchestrator.delete_data(source, game, True, True)

        session.execute.assert_not_called()
        assert store.get_status("g6") == GameStatus.EXTRACTED

    def test_failed_delete_keeps_status(self, orchestrator, ops, store, source, game) -> None:
        store.set_status("g1", GameStatus.EXTRACTED)
        ops.delete_entry.side_effect = CommandError("rm", 1, "Permission denied")
        with pytest.raises(CommandError):
            orchestrator.delete_data(source, game, True, True)
        assert store.get_status("g1") == GameStatus.EXTRACTED


class TestReconcile:
    def _listing(self, archives: list[str], folders: list[str]):
        def _list(directory: str) -> list[str]:
            return archives if directory == "/data/zips" else folders

        return _list

    def test_archive_only_is_downloaded(self, orchestrator, ops, store, source) -> None:
        ops.list_entries.side_effect = self._listing(["mario.zip"], [])
        result = orchestrator.reconcile(source)
        assert store.get_status("g1") == GameStatus.DOWNLOADED
        assert result.changed == {"g1": GameStatus.DOWNLOADED}

    @pytest.mark.parametrize(
        ("archives", "folders", "expected"),
        [
            (["mario.zip"], ["mario"], GameStatus.EXTRACTED),
            ([], ["mario"], GameStatus.EXTRACTED_NO_ZIP),
            ([], [], GameStatus.NOT_INSTALLED),
        ],
    )
    def test_presence_table(self, orchestrator, ops, store, source, archives, folders, expected) -> None:
        store.set_status("g1", GameStatus.DOWNLOADING if expected is GameStatus.NOT_INSTALLED else GameStatus.DOWNLOADED)
        ops.list_entries.side_effect = self._listing(archives, folders)
        orchestrator.reconcile(source)
        assert store.get_status("g1") == expected

    def test_lists_each_directory_once(self, ops, store) -> None:
        games = tuple(
            GameEntry(id=f"g{i}", name=f"G{i}", zip=f"{i}.zip", url=f"/{i}.zip", folder=f"game{i}")
            for i in range(5)
        )
        source = CatalogSource(name="s", base_path="/data/games", zip_path="/data/zips", games=games)
        ops.list_entries.side_effect = self._listing(["1.zip", "3.zip"], ["game3"])
        LifecycleOrchestrator(ops, store).reconcile(source)
        assert ops.list_entries.call_count == 2
        assert store.get_status("g1") == GameStatus.DOWNLOADED
        assert store.get_status("g3") == GameStatus.EXTRACTED

    def test_idempotent(self, orchestrator, ops, store, source) -> None:
        ops.list_entries.side_effect = self._listing(["mario.zip"], ["mario"])
        orchestrator.reconcile(source)

        store.set_status = MagicMock(wraps=store.set_status)
        second = orchestrator.reconcile(source)
        store.set_status.assert_not_called()
        assert second.changed == {}
        assert second.unchanged == ["g1"]

    def test_unlisted_default_not_written(self, orchestrator, ops, store, source) -> None:
        ops.list_entries.return_value = []
        result = orchestrator.reconcile(source)
        assert result.changed == {}
        assert store.get_all() == {}


class TestStatusReads:
    def test_statuses_for_catalog_games(self, orchestrator, store, source, game) -> None:
        other = GameEntry(id="g2", name="Zelda", zip="zelda.zip", url="/zelda.zip")
        store.set_status("g1", GameStatus.EXTRACTED)
        assert orchestrator.statuses([game, other]) == {
            "g1": GameStatus.EXTRACTED,
            "g2": GameStatus.NOT_INSTALLED,
        }
        assert orchestrator.status_of("g1") == GameStatus.EXTRACTED


class TestSingleFlight:
    def test_concurrent_operation_on_same_game_rejected(self, orchestrator, ops, store, source, game) -> None:
        errors: list[Exception] = []

        def _fetch(*args):
            try:
                orchestrator.delete_data(source, game, True, True)
            except OperationInProgressError as e:
                errors.append(e)
            assert orchestrator.busy_ids() == {"g1"}

        ops.fetch_resource.side_effect = _fetch
        orchestrator.download(source, game)
        assert len(errors) == 1
        ops.delete_entry.assert_not_called()
        assert store.get_status("g1") == GameStatus.DOWNLOADED
        assert orchestrator.busy_ids() == set()

    def test_reconcile_leaves_busy_game_alone(self, orchestrator, ops, store, source, game) -> None:
        ops.list_entries.return_value = []

        def _fetch(*args):
            orchestrator.reconcile(source)
            assert store.get_status("g1") == GameStatus.DOWNLOADING

        ops.fetch_resource.side_effect = _fetch
        orchestrator.download(source, game)
        assert store.get_status("g1") == GameStatus.DOWNLOADED


class TestEndToEnd:
    def test_cancelled_download_over_ssh(self, session, transport, store, source, game) -> None:
        transport.on("wget", events=[("stdout", b"777\n"), ("stderr", b" 3%"), ("stderr", b" 9%")])
        orchestrator = LifecycleOrchestrator(RemoteOperations(session), store)

        def _on_progress(op_id: str, percent: int) -> None:
            orchestrator.cancel_download(game)

        with pytest.raises(OperationCancelledError):
            orchestrator.download(source, game, on_progress=_on_progress)

        assert store.get_status("g1") == GameStatus.NOT_INSTALLED
        assert "kill -KILL -- -777" in transport.commands
        assert session.active_operations() == []

    def test_check_installed(self, session, transport, store, source, game) -> None:
        transport.on("[ -e", exit_status=1)
        orchestrator = LifecycleOrchestrator(RemoteOperations(session), store)
        assert orchestrator.check_installed(source, game) is False
        transport.on("[ -e /data/games/mario ]", exit_status=0)
        assert orchestrator.check_installed(source, game) is True
