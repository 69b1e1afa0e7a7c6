# snapvault_Server_API/app/core/Sync/__init__.py
from .core import SyncManager
from .models import PhotoRecord, RemoteMetaItem, SyncResult, SyncState
from .exceptions import SyncError, TransportError, RemoteNotFoundError, DeviceIdentityError
from .transport import SyncTransport, HttpApiTransport
from .conflict import ConflictResolver, TombstoneWinsStrategy
from .device_identity import DeviceIdentity

__all__ = [
    "SyncManager",
    "PhotoRecord",
    "RemoteMetaItem",
    "SyncResult",
    "SyncState",
    "SyncError",
    "TransportError",
    "RemoteNotFoundError",
    "DeviceIdentityError",
    "SyncTransport",
    "HttpApiTransport",
    "ConflictResolver",
    "TombstoneWinsStrategy",
    "DeviceIdentity",
]
