"""Catalog models — read-only game entries and their source directories."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from romhost.errors import CatalogError, UnsafeArgumentError
from romhost.remote.commands import check_name, join_path

DEFAULT_RESOURCE_BASE = "https://archive.org"


def _require_str(data: dict[str, Any], key: str, *, context: str, allow_empty: bool = False) -> str:
    value = data.get(key, "")
    if value is None:
        value = ""
    if not isinstance(value, str):
        raise CatalogError(f"{context}: '{key}' must be a string")
    if not value and not allow_empty:
        raise CatalogError(f"{context}: '{key}' is required")
    return value


def _require_name(value: str, key: str, *, context: str) -> str:
    try:
        return check_name(value)
    except UnsafeArgumentError as e:
        raise CatalogError(f"{context}: bad '{key}': {e}") from e


@dataclass(frozen=True)
class GameEntry:
    """One catalog game. Never mutated by the core."""

    id: str
    name: str
    zip: str  # archive file name inside the source's zip_path
    url: str  # absolute URL or a path relative to DEFAULT_RESOURCE_BASE
    folder: str = ""  # extracted directory name inside base_path
    image: str = ""
    description: str = ""
    size: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GameEntry:
        if not isinstance(data, dict):
            raise CatalogError(f"Game entry must be an object, got {type(data).__name__}")
        game_id = _require_str(data, "id", context="game")
        context = f"game '{game_id}'"
        zip_name = _require_str(data, "zip", context=context)
        folder = _require_str(data, "folder", context=context, allow_empty=True)
        return cls(
            id=game_id,
            name=_require_str(data, "name", context=context, allow_empty=True) or game_id,
            zip=_require_name(zip_name, "zip", context=context),
            url=_require_str(data, "url", context=context),
            folder=_require_name(folder, "folder", context=context) if folder else "",
            image=str(data.get("image") or data.get("imageSrc") or ""),
            description=str(data.get("description") or ""),
            size=str(data.get("size") or ""),
        )

    def resource_base(self) -> str:
        """Base URL the fetch prepends to ``url``."""
        return "" if self.url.startswith("http") else DEFAULT_RESOURCE_BASE


@dataclass(frozen=True)
class CatalogSource:
    """A named collection of games plus its remote directories."""

    name: str
    base_path: str  # install directory
    zip_path: str  # archive directory
    games: tuple[GameEntry, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> CatalogSource:
        if not isinstance(data, dict):
            raise CatalogError(f"Source '{name}' must be an object")
        context = f"source '{name}'"
        raw_games = data.get("games", [])
        if not isinstance(raw_games, list):
            raise CatalogError(f"{context}: 'games' must be a list")

        games: list[GameEntry] = []
        seen: set[str] = set()
        for raw in raw_games:
            game = GameEntry.from_dict(raw)
            if game.id in seen:
                raise CatalogError(f"{context}: duplicate game id '{game.id}'")
            seen.add(game.id)
            games.append(game)

        return cls(
            name=name,
            base_path=_require_str(data, "basePath", context=context),
            zip_path=_require_str(data, "zipPath", context=context),
            games=tuple(games),
        )

    def get_game(self, game_id: str) -> GameEntry | None:
        for game in self.games:
            if game.id == game_id:
                return game
        return None

    def archive_path(self, game: GameEntry) -> str:
        """Remote archive path; raises UnsafeArgumentError for a bad name."""
        return join_path(self.zip_path, game.zip)

    def folder_path(self, game: GameEntry) -> str:
        return join_path(self.base_path, game.folder)
