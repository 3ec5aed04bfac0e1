"""Application context — service container for dependency injection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from romhost.config import Config
    from romhost.core.lifecycle import LifecycleOrchestrator
    from romhost.data.library_store import LibraryStore
    from romhost.remote.operations import RemoteOperations
    from romhost.remote.session import RemoteSession


@dataclass
class AppContext:
    """
    Central service container.

    One session, owned here and handed to the services that need it;
    ``session.connect``/``disconnect`` are called explicitly by the caller.
    """

    config: Config
    session: RemoteSession
    operations: RemoteOperations
    library_store: LibraryStore
    orchestrator: LifecycleOrchestrator
