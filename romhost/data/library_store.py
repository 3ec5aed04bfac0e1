"""Library store — JSON-backed install status per game id."""

from __future__ import annotations

import json
import threading
import time
from pathlib import Path

from loguru import logger

from romhost.models.library import GameStatus, LibraryRecord


def _now_ms() -> int:
    return int(time.time() * 1000)


class LibraryStore:
    """
    Game status index — reads/writes library-store.json.

    File structure::

        {"games": {"<id>": {"id": "<id>", "status": "EXTRACTED", "lastUpdated": 1700000000000}}}

    A game without a record is NOT_INSTALLED.  Every ``set_status`` is
    written to disk before it returns.
    """

    FILE_NAME = "library-store.json"

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = data_dir
        self._path = data_dir / self.FILE_NAME
        self._records: dict[str, LibraryRecord] = {}
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> None:
        """Load records from disk, then reset interrupted transfers."""
        with self._lock:
            self._records = self._read()

            stale = [r for r in self._records.values() if r.status.is_transient]
            for record in stale:
                logger.info(f"Resetting interrupted '{record.id}' ({record.status}) to NOT_INSTALLED")
                record.status = GameStatus.NOT_INSTALLED
                record.last_updated = _now_ms()
            if stale:
                self.save()

    def _read(self) -> dict[str, LibraryRecord]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to load library store, starting empty: {e}")
            return {}

        games = data.get("games") if isinstance(data, dict) else None
        if not isinstance(games, dict):
            logger.warning("Library store has no 'games' mapping, starting empty")
            return {}

        records: dict[str, LibraryRecord] = {}
        for key, raw in games.items():
            try:
                record = LibraryRecord.from_dict(key, raw)
            except (TypeError, KeyError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed library record '{key}': {e}")
                continue
            records[key] = record
        return records

    def save(self) -> None:
        """Write all records atomically (temp file + replace)."""
        with self._lock:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            data = {"games": {key: record.to_dict() for key, record in self._records.items()}}
            tmp = self._path.with_suffix(".tmp")
            try:
                with open(tmp, "w", encoding="utf-8") as f:
                    json.dump(data, f, ensure_ascii=False, indent=2)
                tmp.replace(self._path)
            except OSError as e:
                logger.error(f"Failed to save library store: {e}")
                tmp.unlink(missing_ok=True)
                raise

    # ── Access ──

    def get_status(self, game_id: str) -> GameStatus:
        with self._lock:
            record = self._records.get(game_id)
            return record.status if record else GameStatus.NOT_INSTALLED

    def set_status(self, game_id: str, status: GameStatus) -> LibraryRecord:
        """Upsert and persist. Returns the stored record."""
        with self._lock:
            record = LibraryRecord(id=game_id, status=GameStatus(status), last_updated=_now_ms())
            self._records[game_id] = record
            self.save()
        logger.debug(f"Status '{game_id}' → {record.status}")
        return record

    def get_all(self) -> dict[str, LibraryRecord]:
        """Snapshot copy of every record."""
        with self._lock:
            return {
                key: LibraryRecord(r.id, r.status, r.last_updated)
                for key, r in self._records.items()
            }

    @property
    def count(self) -> int:
        return len(self._records)
