# snapvault_Server_API/app/api/v1/endpoints/sync.py
# Description: Photo sync API: signed upload/download targets, upload confirmation, flag updates,
#              tombstones and the per-device sync list.
#
# Imports
from typing import Optional
#
# 3rd-party imports
from fastapi import APIRouter, Depends, HTTPException, Query, status
from loguru import logger
#
# Local Imports
from snapvault_Server_API.app.api.v1.API_Deps.Sync_Deps import get_remote_photo_store
from snapvault_Server_API.app.api.v1.schemas.sync_models import (
    ID_REGEX,
    DeleteRequest,
    DownloadUrlRequest,
    DownloadUrlResponse,
    OkResponse,
    RemoteMetaItemResponse,
    SyncListResponse,
    UpdateFlagsRequest,
    UploadCompleteRequest,
    UploadUrlRequest,
    UploadUrlResponse,
)
from snapvault_Server_API.app.core.DB_Management.Remote_Meta_DB import NotFoundError, RemoteMetaDBError
from snapvault_Server_API.app.core.Storage.S3_Storage import StorageError
from snapvault_Server_API.app.services.remote_photo_store import RemotePhotoStore
#
#######################################################################################################################
#
# Functions:

router = APIRouter()


def handle_store_errors(e: Exception, operation: str):
    if isinstance(e, NotFoundError):
        logger.info(f"{operation}: not found ({e.device_id}/{e.photo_id})")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    elif isinstance(e, ValueError):
        logger.warning(f"{operation}: invalid input: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    elif isinstance(e, StorageError):
        logger.error(f"{operation}: object storage signing failed: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            detail="Object storage is unavailable.")
    elif isinstance(e, RemoteMetaDBError):
        logger.error(f"{operation}: metadata store error: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            detail="A database error occurred while processing your request.")
    else:
        logger.error(f"{operation}: unexpected error: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            detail="An unexpected error occurred while processing your request.")


@router.get("/health", response_model=OkResponse, summary="Liveness check", tags=["Sync"])
def health():
    return OkResponse()


@router.post(
    "/upload-url",
    response_model=UploadUrlResponse,
    summary="Issue a signed upload URL (metadata is not written)",
    tags=["Sync"]
)
def create_upload_url(body: UploadUrlRequest, store: RemotePhotoStore = Depends(get_remote_photo_store)):
    try:
        return store.issue_upload_target(body.device_id, body.id, body.content_type)
    except Exception as e:
        handle_store_errors(e, "upload-url")


@router.post("/upload-complete", response_model=OkResponse, summary="Confirm a finished upload", tags=["Sync"])
def upload_complete(body: UploadCompleteRequest, store: RemotePhotoStore = Depends(get_remote_photo_store)):
    try:
        store.confirm_upload(
            body.device_id,
            body.id,
            folder=body.folder,
            favorite=body.favorite,
            created_at=body.created_at,
            updated_at=body.updated_at,
            original_name=body.original_name,
        )
    except Exception as e:
        handle_store_errors(e, "upload-complete")
    return OkResponse()


@router.post(
    "/download-url",
    response_model=DownloadUrlResponse,
    summary="Issue a signed download URL for a live photo",
    tags=["Sync"]
)
def create_download_url(body: DownloadUrlRequest, store: RemotePhotoStore = Depends(get_remote_photo_store)):
    try:
        return store.issue_download_target(body.device_id, body.id)
    except Exception as e:
        handle_store_errors(e, "download-url")


@router.post("/update", response_model=OkResponse, summary="Update folder/favorite (last writer wins)",
             tags=["Sync"])
def update_flags(body: UpdateFlagsRequest, store: RemotePhotoStore = Depends(get_remote_photo_store)):
    changes = {name: getattr(body, name) for name in ("folder", "favorite") if name in body.model_fields_set}
    try:
        store.update_flags(body.device_id, body.id, updated_at=body.updated_at, **changes)
    except Exception as e:
        handle_store_errors(e, "update")
    return OkResponse()


@router.post("/delete", response_model=OkResponse, summary="Tombstone a photo (idempotent)", tags=["Sync"])
def delete_photo(body: DeleteRequest, store: RemotePhotoStore = Depends(get_remote_photo_store)):
    try:
        store.mark_deleted(body.device_id, body.id)
    except Exception as e:
        handle_store_errors(e, "delete")
    return OkResponse()


@router.get(
    "/sync",
    response_model=SyncListResponse,
    summary="All metadata entries of a device, tombstones included",
    tags=["Sync"]
)
def sync_list(
        device_id: Optional[str] = Query(None, alias="deviceId", pattern=ID_REGEX),
        store: RemotePhotoStore = Depends(get_remote_photo_store)
):
    try:
        items = store.list_items(device_id)
    except Exception as e:
        handle_store_errors(e, "sync")
    return SyncListResponse(items=[RemoteMetaItemResponse(**item.to_dict()) for item in items])

#
# End of sync.py
#######################################################################################################################
