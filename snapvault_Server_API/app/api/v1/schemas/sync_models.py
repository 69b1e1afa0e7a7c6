# sync_models.py
# Description: Request/response models for the photo sync API (camelCase on the wire).
#
# Imports
from typing import List, Optional
#
# 3rd-party Libraries
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
#
# Local Imports
#
########################################################################################################################
#
# Functions:

ID_REGEX = r"^[A-Za-z0-9._:-]{1,128}$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeviceScopedRequest(CamelModel):
    device_id: Optional[str] = Field(None, pattern=ID_REGEX,
                                     description="Device namespace. Omitted means the shared default namespace.")
    id: str = Field(..., pattern=ID_REGEX, description="Photo id (client generated).")


class UploadUrlRequest(DeviceScopedRequest):
    content_type: str = Field("image/jpeg", min_length=1, max_length=255)
    original_name: str = Field("photo.jpg", max_length=1024)
    folder: Optional[str] = None
    favorite: bool = False
    created_at: Optional[int] = Field(None, ge=0)
    updated_at: Optional[int] = Field(None, ge=0)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "deviceId": "3f0c8a0e-3c8b-4a9c-9a57-0b7f3d1f2a11",
                "id": "b1f7b4c4-2a51-4c4a-8d0e-6f1f6f0a7d90",
                "contentType": "image/jpeg",
                "originalName": "IMG_0042.jpg",
                "folder": "Trips",
                "favorite": False,
                "createdAt": 1718000000000,
                "updatedAt": 1718000000000,
            }
        }
    )


class UploadUrlResponse(CamelModel):
    url: str
    object_key: str
    device_id: str
    expires_in: int


class UploadCompleteRequest(DeviceScopedRequest):
    folder: Optional[str] = None
    favorite: bool = False
    created_at: Optional[int] = Field(None, ge=0)
    updated_at: Optional[int] = Field(None, ge=0)
    original_name: str = Field("photo.jpg", max_length=1024)


class DownloadUrlRequest(DeviceScopedRequest):
    pass


class DownloadUrlResponse(CamelModel):
    url: str


class UpdateFlagsRequest(DeviceScopedRequest):
    """`folder` may be sent as null to clear it; leaving a field out leaves it unchanged."""
    folder: Optional[str] = None
    favorite: Optional[bool] = None
    updated_at: Optional[int] = Field(None, ge=0)


class DeleteRequest(DeviceScopedRequest):
    pass


class OkResponse(BaseModel):
    ok: bool = True


class RemoteMetaItemResponse(CamelModel):
    id: str
    key: str
    created_at: int
    updated_at: int
    folder: Optional[str] = None
    favorite: bool = False
    deleted: bool = False
    original_name: str = "photo.jpg"


class SyncListResponse(BaseModel):
    items: List[RemoteMetaItemResponse] = Field(default_factory=list)

#
# End of sync_models.py
#######################################################################################################################
