# snapvault_Server_API/app/core/Sync/conflict.py
from abc import ABC, abstractmethod
from typing import Optional
import logging

from .models import PhotoRecord, RemoteMetaItem, SyncState

logger = logging.getLogger(__name__)

FORCE_TOMBSTONE = 'force_tombstone'
APPLY_REMOTE = 'apply_remote'
KEEP_LOCAL = 'keep_local'
MATERIALIZE = 'materialize'
IGNORE = 'ignore'


class ConflictResolver(ABC):
    """Abstract base class for pull-phase resolution strategies."""

    @abstractmethod
    def resolve(self, local: Optional[PhotoRecord], remote: RemoteMetaItem) -> str:
        """
        Determines what a pulled remote item does to the local store.

        Args:
            local: Current local record, or None if the id is unknown locally.
            remote: The remote metadata item from the sync list.

        Returns:
            'force_tombstone': Turn the local record into a synced tombstone.
            'apply_remote': Merge remote fields into the local record.
            'keep_local': Leave the local record as it is.
            'materialize': Download the photo and insert it as a new synced record.
            'ignore': Nothing to do (e.g. remote tombstone for an id never seen locally).
        """
        pass


class TombstoneWinsStrategy(ConflictResolver):
    """
    Server tombstones override everything local; otherwise the remote copy wins only when
    it is strictly newer and the local record has nothing unsent.
    """

    def resolve(self, local: Optional[PhotoRecord], remote: RemoteMetaItem) -> str:
        if local is None:
            if remote.deleted:
                logger.debug(f"Resolution ({remote.id}): local nonexistent, remote tombstone. Outcome: Ignore.")
                return IGNORE
            logger.debug(f"Resolution ({remote.id}): local nonexistent. Outcome: Materialize.")
            return MATERIALIZE

        if remote.deleted:
            if local.deleted and local.sync_state == SyncState.SYNCED:
                return KEEP_LOCAL
            logger.debug(f"Resolution ({remote.id}): remote tombstone, local '{local.sync_state.value}'. "
                         f"Outcome: Force Tombstone.")
            return FORCE_TOMBSTONE

        if local.deleted:
            # a tombstone is never revived by a pull
            return KEEP_LOCAL
        if local.is_pending:
            logger.debug(f"Resolution ({remote.id}): local has unsent '{local.sync_state.value}'. Outcome: Keep Local.")
            return KEEP_LOCAL
        if remote.effective_updated_at > local.updated_at:
            logger.debug(f"Resolution ({remote.id}): remote TS {remote.effective_updated_at} > local TS "
                         f"{local.updated_at}. Outcome: Apply Remote.")
            return APPLY_REMOTE
        return KEEP_LOCAL
