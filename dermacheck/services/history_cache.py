"""Per-identity cache of past analyses, refreshed from the remote service."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional, Tuple

from dermacheck.core.errors import DermaCheckError
from dermacheck.schemas.analysis import Diagnosis, HistoryEntry, HistoryStats
from dermacheck.services.remote_client import RemoteClient

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistorySnapshot:
    """What the UI renders: entries, or the error that replaced them."""

    owner_id: Optional[str]
    entries: Tuple[HistoryEntry, ...] = ()
    error: Optional[DermaCheckError] = None
    loaded: bool = False

    @property
    def is_empty(self) -> bool:
        """A genuinely empty history, as opposed to a failed load."""
        return self.loaded and self.error is None and not self.entries


class HistoryCache:
    """Holds the history of exactly one identity at a time.

    ``reset`` re-attributes the cache and bumps an epoch; a refresh only
    lands if the epoch it started under is still current when it completes.
    """

    def __init__(self, remote: RemoteClient) -> None:
        self._remote = remote
        self._lock = threading.Lock()
        self._epoch = 0
        self._snapshot = HistorySnapshot(owner_id=None)

    @property
    def owner_id(self) -> Optional[str]:
        return self._snapshot.owner_id

    @property
    def entries(self) -> Tuple[HistoryEntry, ...]:
        return self._snapshot.entries

    @property
    def error(self) -> Optional[DermaCheckError]:
        return self._snapshot.error

    def snapshot(self) -> HistorySnapshot:
        return self._snapshot

    def reset(self, owner_id: Optional[str]) -> None:
        with self._lock:
            self._epoch += 1
            self._snapshot = HistorySnapshot(owner_id=owner_id)

    def clear(self) -> None:
        self.reset(None)

    def refresh(self, identity_id: str) -> None:
        """Replace the cache with the server's history for ``identity_id``.

        Failures empty the cache and are kept on the snapshot; they are never raised.
        """
        with self._lock:
            if identity_id != self._snapshot.owner_id:
                LOGGER.debug("Ignoring history refresh for %s; cache belongs to %s", identity_id, self._snapshot.owner_id)
                return
            epoch = self._epoch

        try:
            entries = tuple(self._remote.fetch_history(identity_id))
            snapshot = HistorySnapshot(owner_id=identity_id, entries=entries, loaded=True)
        except DermaCheckError as exc:
            LOGGER.error("Failed to load history for %s: %s", identity_id, exc.message)
            snapshot = HistorySnapshot(owner_id=identity_id, error=exc, loaded=True)

        with self._lock:
            if epoch != self._epoch:
                LOGGER.info("Discarding stale history refresh for %s", identity_id)
                return
            self._snapshot = snapshot
        LOGGER.info("History for %s refreshed (%d entries)", identity_id, len(snapshot.entries))

    def stats(self) -> HistoryStats:
        entries = self._snapshot.entries
        return HistoryStats(
            total=len(entries),
            non_normal=sum(1 for e in entries if e.result.diagnosis is not Diagnosis.NORMAL),
            monkeypox=sum(1 for e in entries if e.result.diagnosis is Diagnosis.MONKEYPOX),
        )
