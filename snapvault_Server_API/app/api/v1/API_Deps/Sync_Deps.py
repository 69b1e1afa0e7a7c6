# snapvault_Server_API/app/api/v1/API_Deps/Sync_Deps.py
import threading
from typing import Optional

from fastapi import HTTPException, status
from loguru import logger
#
# Local Imports
from snapvault_Server_API.app.core.config import settings
from snapvault_Server_API.app.core.DB_Management.Remote_Meta_DB import RemoteMetaDatabase, RemoteMetaDBError
from snapvault_Server_API.app.core.Storage.S3_Storage import S3BlobSigner
from snapvault_Server_API.app.services.remote_photo_store import RemotePhotoStore
#
#######################################################################################################################

# --- Process-wide instances ---
_meta_db: Optional[RemoteMetaDatabase] = None
_signer: Optional[S3BlobSigner] = None
_store: Optional[RemotePhotoStore] = None
_deps_lock = threading.Lock()


def _build_store() -> RemotePhotoStore:
    global _meta_db, _signer
    if _meta_db is None:
        logger.info(f"Opening remote metadata DB at {settings['META_DB_PATH']}")
        _meta_db = RemoteMetaDatabase(settings["META_DB_PATH"])
    if _signer is None:
        _signer = S3BlobSigner(
            endpoint_url=settings["S3_ENDPOINT_PUBLIC"],
            access_key=settings["S3_ACCESS_KEY"],
            secret_key=settings["S3_SECRET_KEY"],
            bucket=settings["S3_BUCKET"],
            region=settings["S3_REGION"],
            expires_in=settings["SIGNED_URL_EXPIRES_SECONDS"],
        )
    return RemotePhotoStore(
        _meta_db,
        _signer,
        key_prefix=settings["S3_KEY_PREFIX"],
        default_namespace=settings["DEFAULT_DEVICE_NAMESPACE"],
    )


def get_remote_photo_store() -> RemotePhotoStore:
    """FastAPI dependency returning the shared RemotePhotoStore, created on first use."""
    global _store
    if _store is not None:
        return _store
    with _deps_lock:
        if _store is None:
            try:
                _store = _build_store()
            except (RemoteMetaDBError, ValueError) as e:
                logger.critical(f"Could not initialize the remote photo store: {e}")
                raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                                    detail="Storage backend unavailable.") from e
    return _store


def reset_remote_photo_store():
    """Drops the cached instances (used on shutdown)."""
    global _meta_db, _signer, _store
    with _deps_lock:
        if _meta_db is not None:
            _meta_db.close_connection()
        _meta_db = _signer = _store = None
