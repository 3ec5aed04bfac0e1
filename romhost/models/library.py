"""Library record models — per-game install lifecycle state."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class GameStatus(StrEnum):
    """Install progress of one game on the remote host."""

    NOT_INSTALLED = "NOT_INSTALLED"
    DOWNLOADING = "DOWNLOADING"
    DOWNLOADED = "DOWNLOADED"
    EXTRACTING = "EXTRACTING"
    EXTRACTED = "EXTRACTED"
    EXTRACTED_NO_ZIP = "EXTRACTED_NO_ZIP"

    @property
    def is_transient(self) -> bool:
        """In-flight states that cannot survive a process restart."""
        return self in (GameStatus.DOWNLOADING, GameStatus.EXTRACTING)


@dataclass
class LibraryRecord:
    """One entry of library-store.json. ``last_updated`` is epoch milliseconds."""

    id: str
    status: GameStatus
    last_updated: int = 0

    def to_dict(self) -> dict[str, str | int]:
        return {"id": self.id, "status": self.status.value, "lastUpdated": self.last_updated}

    @classmethod
    def from_dict(cls, key: str, data: dict) -> LibraryRecord:
        return cls(
            id=key,
            status=GameStatus(data["status"]),
            last_updated=int(data.get("lastUpdated", 0)),
        )


_HAS_ARCHIVE = frozenset(
    {GameStatus.DOWNLOADED, GameStatus.EXTRACTING, GameStatus.EXTRACTED}
)
_HAS_FOLDER = frozenset({GameStatus.EXTRACTED, GameStatus.EXTRACTED_NO_ZIP})


def status_after_delete(
    current: GameStatus, delete_archive: bool, delete_extracted_folder: bool
) -> GameStatus:
    """Resulting status of a delete, computed from what survives it.

    - both → NOT_INSTALLED
    - archive only → EXTRACTED_NO_ZIP (NOT_INSTALLED when nothing was extracted)
    - folder only → DOWNLOADED (NOT_INSTALLED when there was no archive)
    - neither → unchanged
    """
    if not delete_archive and not delete_extracted_folder:
        return current
    keeps_archive = not delete_archive and current in _HAS_ARCHIVE
    keeps_folder = not delete_extracted_folder and current in _HAS_FOLDER
    return status_from_presence(keeps_archive, keeps_folder)


def status_from_presence(has_archive: bool, has_folder: bool) -> GameStatus:
    """Status implied by what actually exists on the remote host."""
    if has_archive and has_folder:
        return GameStatus.EXTRACTED
    if has_folder:
        return GameStatus.EXTRACTED_NO_ZIP
    if has_archive:
        return GameStatus.DOWNLOADED
    return GameStatus.NOT_INSTALLED
