# snapvault_Server_API/app/core/Sync/core.py
import logging
import threading
from typing import List, Optional

from .models import PhotoRecord, RemoteMetaItem, SyncResult, SyncState, now_ms
from .exceptions import SyncError
from .transport import SyncTransport
from .conflict import (
    ConflictResolver,
    TombstoneWinsStrategy,
    FORCE_TOMBSTONE,
    APPLY_REMOTE,
    MATERIALIZE,
)
from .device_identity import DeviceIdentity

logger = logging.getLogger(__name__)


class SyncManager:
    """Runs push/pull passes between the local photo database and the remote store."""

    def __init__(self,
                 db_instance,
                 transport: SyncTransport,
                 device_identity: DeviceIdentity,
                 resolver: Optional[ConflictResolver] = None):
        """
        Initializes the SyncManager.

        Args:
            db_instance: An initialized PhotosDatabase for the local store.
            transport: An object implementing the SyncTransport interface.
            device_identity: Resolves the namespace this device files its remote data under.
            resolver: Pull-phase resolution strategy. Defaults to TombstoneWinsStrategy.
        """
        if not isinstance(transport, SyncTransport): raise TypeError("transport must be a SyncTransport object")
        if resolver is not None and not isinstance(resolver, ConflictResolver):
            raise TypeError("resolver must be a ConflictResolver object")

        self.db = db_instance
        self.transport = transport
        self.device_identity = device_identity
        self.resolver = resolver or TombstoneWinsStrategy()
        self._sync_lock = threading.Lock()  # one pass at a time per instance

    def is_syncing(self) -> bool:
        return self._sync_lock.locked()

    # --- Entry points ---
    def sync_now(self, reason: str = "manual") -> SyncResult:
        """
        Runs one full pass: push (deletes, uploads, updates), then pull.

        Returns immediately with a zero-effect result if a pass is already running.
        Per-item failures are counted in the result; only a failure to resolve the
        device id raises (SyncError).
        """
        if not self._sync_lock.acquire(blocking=False):
            logger.info(f"Sync requested ({reason}) while a pass is running; skipping.")
            return SyncResult.skipped_pass()
        try:
            device_id = self.device_identity.get_device_id()
            if not device_id:
                raise SyncError("Device id resolved to an empty value.")
            logger.info(f"Sync pass started ({reason}) for device {device_id}")
            result = SyncResult()

            self._push(device_id, result)
            self._pull(device_id, result)

            ts = now_ms()
            try:
                self.db.set_last_sync_at(ts)
                result.last_sync_at = ts
            except Exception as e:
                logger.warning(f"Could not record last sync time: {e}")
                result.record_failure(f"lastSyncAt: {e}")

            logger.info(
                f"Sync pass finished: uploaded={result.uploaded} updated={result.updated} "
                f"deleted={result.deleted} pulled={result.pulled} merged={result.merged} "
                f"tombstoned={result.tombstoned} failed={result.failed} pull_skipped={result.pull_skipped}"
            )
            return result
        finally:
            self._sync_lock.release()

    def sync_if_enabled(self, reason: str = "auto") -> SyncResult:
        """Event-source entry point: honours the syncEnabled setting and never raises."""
        try:
            if not self.db.get_sync_enabled():
                logger.debug(f"Sync disabled; ignoring trigger '{reason}'.")
                return SyncResult(ok=True, skipped=True)
            return self.sync_now(reason)
        except Exception as e:
            logger.error(f"Sync pass ({reason}) aborted: {e}", exc_info=True)
            return SyncResult(ok=False, errors=[str(e)])

    # --- Phase 1: push ---
    def _push(self, device_id: str, result: SyncResult):
        try:
            pending = self.db.list_pending_photos(include_blob=False)
        except Exception as e:
            logger.error(f"Could not list pending records: {e}", exc_info=True)
            result.record_failure(f"list pending: {e}")
            return

        deletes = [r for r in pending if r.sync_state == SyncState.PENDING_DELETE]
        uploads = [r for r in pending if r.sync_state == SyncState.PENDING_UPLOAD]
        updates = [r for r in pending if r.sync_state == SyncState.PENDING_UPDATE]
        logger.debug(f"Pending: {len(deletes)} delete(s), {len(uploads)} upload(s), {len(updates)} update(s)")

        for record in deletes:
            self._push_delete(device_id, record, result)

        for snapshot in uploads:
            current = self._refetch(snapshot.id, result)
            if current is None:
                continue
            if current.deleted:
                self._push_delete(device_id, current, result)
            elif current.sync_state == SyncState.PENDING_UPLOAD:
                self._push_upload(device_id, current, result)

        for snapshot in updates:
            current = self._refetch(snapshot.id, result)
            if current is None:
                continue
            if current.deleted:
                self._push_delete(device_id, current, result)
            elif current.sync_state == SyncState.PENDING_UPDATE:
                self._push_update(device_id, current, result)

    def _refetch(self, photo_id: str, result: SyncResult) -> Optional[PhotoRecord]:
        try:
            return self.db.get_photo(photo_id)
        except Exception as e:
            logger.warning(f"Could not re-read {photo_id}: {e}")
            result.record_failure(f"{photo_id}: {e}")
            return None

    def _push_delete(self, device_id: str, record: PhotoRecord, result: SyncResult):
        if record.sync_state != SyncState.PENDING_DELETE:
            return
        try:
            self.transport.delete_remote(device_id, record.id)
            if not self.db.mark_synced(record.id, expected_updated_at=record.updated_at):
                logger.info(f"{record.id} changed during delete; it will be re-sent next pass.")
            result.deleted += 1
        except Exception as e:
            logger.warning(f"Delete of {record.id} failed, stays pending_delete: {e}")
            result.record_failure(f"delete {record.id}: {e}")

    def _push_upload(self, device_id: str, record: PhotoRecord, result: SyncResult):
        try:
            target = self.transport.create_upload_url(device_id, record)
            self.transport.upload_blob(target["url"], record.blob, record.content_type)
            self.transport.confirm_upload(device_id, record)
            if not self.db.mark_synced(record.id, expected_updated_at=record.updated_at):
                logger.info(f"{record.id} changed during upload; it will be re-sent next pass.")
            result.uploaded += 1
        except Exception as e:
            logger.warning(f"Upload of {record.id} failed, stays pending_upload: {e}")
            result.record_failure(f"upload {record.id}: {e}")

    def _push_update(self, device_id: str, record: PhotoRecord, result: SyncResult):
        try:
            self.transport.update_flags(device_id, record)
            if not self.db.mark_synced(record.id, expected_updated_at=record.updated_at):
                logger.info(f"{record.id} changed during update; it will be re-sent next pass.")
            result.updated += 1
        except Exception as e:
            logger.warning(f"Update of {record.id} failed, stays pending_update: {e}")
            result.record_failure(f"update {record.id}: {e}")

    # --- Phase 2: pull ---
    def _pull(self, device_id: str, result: SyncResult):
        try:
            items: List[RemoteMetaItem] = self.transport.get_sync_list(device_id)
        except Exception as e:
            logger.warning(f"Pull skipped, remote list unavailable: {e}")
            result.pull_skipped = True
            return

        for item in items:
            try:
                local = self.db.get_photo(item.id, include_blob=False)
                resolution = self.resolver.resolve(local, item)
                if resolution == FORCE_TOMBSTONE:
                    if self.db.apply_server_deleted(item.id):
                        result.tombstoned += 1
                elif resolution == APPLY_REMOTE:
                    if self.db.upsert_local_meta_from_server(item):
                        result.merged += 1
                elif resolution == MATERIALIZE:
                    self._materialize(device_id, item, result)
            except Exception as e:
                logger.warning(f"Pull of {item.id} failed: {e}")
                result.record_failure(f"pull {item.id}: {e}")

    def _materialize(self, device_id: str, item: RemoteMetaItem, result: SyncResult):
        try:
            url = self.transport.get_download_url(device_id, item.id)
            blob, content_type = self.transport.fetch_blob(url)
        except Exception as e:
            # left absent locally; the next pull retries
            logger.info(f"Download of {item.id} failed: {e}")
            result.record_failure(f"download {item.id}: {e}")
            return
        if self.db.insert_downloaded_photo(item, blob, content_type) is not None:
            result.pulled += 1
