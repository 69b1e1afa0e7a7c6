# /snapvault_Server_API/app/services/remote_photo_store.py
#
# Server-side operations on a device's photo metadata map: signed URL issuance,
# upload confirmation, last-writer-wins flag updates and tombstoning.
#
# Imports
import re
import time
from typing import Any, Dict, List, Optional
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from snapvault_Server_API.app.core.DB_Management.Remote_Meta_DB import RemoteMetaDatabase, NotFoundError
from snapvault_Server_API.app.core.Storage.S3_Storage import S3BlobSigner, build_object_key
from snapvault_Server_API.app.core.Sync.models import (
    RemoteMetaItem,
    DEFAULT_CONTENT_TYPE,
    DEFAULT_ORIGINAL_NAME,
    normalize_folder,
)
#
#######################################################################################################################
#
# Functions:

ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")
DEFAULT_DEVICE_NAMESPACE = "default"


def _now_ms() -> int:
    return int(time.time() * 1000)


def validate_identifier(value: str, field_name: str = "id") -> str:
    """Ids become object key segments, so they are restricted to a path-safe alphabet."""
    if not isinstance(value, str) or not ID_PATTERN.match(value) or value in (".", ".."):
        raise ValueError(f"Invalid {field_name}: must match {ID_PATTERN.pattern}")
    return value


class RemotePhotoStore:
    def __init__(self, meta_db: RemoteMetaDatabase, signer: S3BlobSigner, key_prefix: str = "photos",
                 default_namespace: str = DEFAULT_DEVICE_NAMESPACE):
        self.meta_db = meta_db
        self.signer = signer
        self.key_prefix = key_prefix
        self.default_namespace = validate_identifier(default_namespace, "default namespace")

    def resolve_device_id(self, device_id: Optional[str]) -> str:
        """A missing deviceId maps to the shared legacy namespace for older clients."""
        if device_id is None or (isinstance(device_id, str) and not device_id.strip()):
            logger.debug(f"Request without deviceId; using namespace '{self.default_namespace}'")
            return self.default_namespace
        return validate_identifier(device_id.strip(), "deviceId")

    def object_key(self, device_id: str, photo_id: str) -> str:
        return build_object_key(self.key_prefix, device_id, photo_id)

    def issue_upload_target(self, device_id: Optional[str], photo_id: str,
                            content_type: Optional[str] = None) -> Dict[str, Any]:
        """Signs a PUT for the photo's object key. Metadata is left untouched."""
        device_id = self.resolve_device_id(device_id)
        validate_identifier(photo_id)
        key = self.object_key(device_id, photo_id)
        url = self.signer.presign_upload(key, content_type or DEFAULT_CONTENT_TYPE)
        logger.info(f"Issued upload URL for {device_id}/{photo_id}")
        return {"url": url, "objectKey": key, "deviceId": device_id, "expiresIn": self.signer.expires_in}

    def confirm_upload(self, device_id: Optional[str], photo_id: str, *, folder: Optional[str] = None,
                       favorite: bool = False, created_at: Optional[int] = None,
                       updated_at: Optional[int] = None,
                       original_name: Optional[str] = None) -> RemoteMetaItem:
        """
        Commits metadata after the bytes have landed in storage.

        An existing tombstone survives the confirmation: a delete that reached the server first
        is never undone by a late upload completion. A confirmation older than the stored entry
        (a retried request, or another device edited since) leaves the stored flags and
        updatedAt in place, so updatedAt never moves backwards.
        """
        device_id = self.resolve_device_id(device_id)
        validate_identifier(photo_id)
        now = _now_ms()
        created_at = created_at if created_at is not None else now
        updated_at = updated_at if updated_at is not None else now
        with self.meta_db.transaction():
            existing = self.meta_db.get_item(device_id, photo_id)
            item = RemoteMetaItem(
                id=photo_id,
                key=self.object_key(device_id, photo_id),
                created_at=created_at,
                updated_at=updated_at,
                folder=normalize_folder(folder),
                favorite=bool(favorite),
                deleted=False,
                original_name=original_name or DEFAULT_ORIGINAL_NAME,
            )
            if existing is not None and existing.deleted:
                item.deleted = True
                item.updated_at = max(existing.updated_at, updated_at)
                logger.info(f"Upload confirmed for tombstoned {device_id}/{photo_id}; tombstone kept")
            elif existing is not None and existing.updated_at > updated_at:
                item.created_at = existing.created_at
                item.updated_at = existing.updated_at
                item.folder = existing.folder
                item.favorite = existing.favorite
                logger.info(f"Stale upload confirmation for {device_id}/{photo_id} "
                            f"({updated_at} < {existing.updated_at}); stored flags kept")
            self.meta_db.put_item(device_id, item)
        logger.info(f"Upload confirmed for {device_id}/{photo_id}")
        return item

    def issue_download_target(self, device_id: Optional[str], photo_id: str) -> Dict[str, Any]:
        device_id = self.resolve_device_id(device_id)
        validate_identifier(photo_id)
        item = self.meta_db.get_item(device_id, photo_id)
        if item is None or item.deleted:
            raise NotFoundError(device_id=device_id, photo_id=photo_id)
        url = self.signer.presign_download(item.key or self.object_key(device_id, photo_id))
        return {"url": url}

    def mark_deleted(self, device_id: Optional[str], photo_id: str) -> RemoteMetaItem:
        """Idempotent tombstoning. Creates the tombstone when no entry exists yet."""
        device_id = self.resolve_device_id(device_id)
        validate_identifier(photo_id)
        now = _now_ms()
        with self.meta_db.transaction():
            item = self.meta_db.get_item(device_id, photo_id)
            if item is None:
                item = RemoteMetaItem(
                    id=photo_id,
                    key=self.object_key(device_id, photo_id),
                    created_at=now,
                    updated_at=now,
                    deleted=True,
                )
                logger.info(f"Tombstone created ahead of upload for {device_id}/{photo_id}")
            else:
                item.deleted = True
                item.updated_at = max(item.updated_at or 0, now)
            self.meta_db.put_item(device_id, item)
        return item

    def update_flags(self, device_id: Optional[str], photo_id: str, updated_at: Optional[int] = None,
                     **changes: Any) -> bool:
        """
        Applies `folder` and/or `favorite` under last-writer-wins.

        Returns:
            True if the change was applied, False if it was stale (stored updatedAt is newer).
            A stale write is still a success for the caller.

        Raises:
            NotFoundError: no entry, or the entry is a tombstone.
        """
        device_id = self.resolve_device_id(device_id)
        validate_identifier(photo_id)
        unknown = set(changes) - {"folder", "favorite"}
        if unknown:
            raise ValueError(f"Unsupported fields for update: {sorted(unknown)}")
        incoming = updated_at if updated_at is not None else _now_ms()
        with self.meta_db.transaction():
            item = self.meta_db.get_item(device_id, photo_id)
            if item is None or item.deleted:
                raise NotFoundError(device_id=device_id, photo_id=photo_id)
            if incoming < item.updated_at:
                logger.info(f"Stale update for {device_id}/{photo_id} ({incoming} < {item.updated_at}); ignored")
                return False
            if "folder" in changes:
                item.folder = normalize_folder(changes["folder"])
            if "favorite" in changes and changes["favorite"] is not None:
                item.favorite = bool(changes["favorite"])
            item.updated_at = incoming
            self.meta_db.put_item(device_id, item)
        return True

    def list_items(self, device_id: Optional[str]) -> List[RemoteMetaItem]:
        return self.meta_db.list_items(self.resolve_device_id(device_id))

#
# End of remote_photo_store.py
#######################################################################################################################
