# snapvault_Server_API/app/core/Sync/models.py
import time
import uuid
import logging
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, Dict, Any, List

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "image/jpeg"
DEFAULT_ORIGINAL_NAME = "photo.jpg"


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


def generate_id() -> str:
    return str(uuid.uuid4())


def normalize_folder(folder: Optional[str]) -> Optional[str]:
    """Trims a folder label; blank labels mean unfiled (None)."""
    if folder is None:
        return None
    folder = str(folder).strip()
    return folder or None


class SyncState(str, Enum):
    """What the sync engine still owes the remote for a record."""
    LOCAL = "local"
    PENDING_UPLOAD = "pending_upload"
    PENDING_UPDATE = "pending_update"
    PENDING_DELETE = "pending_delete"
    SYNCED = "synced"

    @property
    def is_pending(self) -> bool:
        return self.value.startswith("pending_")

    @classmethod
    def parse(cls, value: Any) -> "SyncState":
        """Maps a stored value to a state; unknown values fall back to LOCAL."""
        try:
            return cls(value)
        except ValueError:
            logger.warning(f"Unknown sync state {value!r}, treating as 'local'.")
            return cls.LOCAL


# A tombstone may only be waiting for its delete to be sent, or already sent.
TOMBSTONE_STATES = frozenset({SyncState.PENDING_DELETE, SyncState.SYNCED})


@dataclass
class PhotoRecord:
    id: str
    name: str
    created_at: int
    updated_at: int
    folder: Optional[str] = None
    is_favorite: bool = False
    deleted: bool = False
    sync_state: SyncState = SyncState.LOCAL
    blob: bytes = field(default=b"", repr=False)
    content_type: str = DEFAULT_CONTENT_TYPE

    def __post_init__(self):
        if not isinstance(self.sync_state, SyncState):
            self.sync_state = SyncState.parse(self.sync_state)

    def validate(self):
        """Raises ValueError when the record is in an illegal combination of states."""
        if not self.id:
            raise ValueError("PhotoRecord.id cannot be empty.")
        if self.deleted and self.sync_state not in TOMBSTONE_STATES:
            raise ValueError(
                f"Deleted record {self.id} cannot be in state '{self.sync_state.value}'; "
                f"expected one of pending_delete/synced."
            )
        if self.updated_at < self.created_at:
            raise ValueError(f"Record {self.id} has updated_at before created_at.")

    @property
    def is_pending(self) -> bool:
        return self.sync_state.is_pending

    @classmethod
    def from_row(cls, row) -> "PhotoRecord":
        """Creates a PhotoRecord from a `photos` table row."""
        created_at = row["created_at"] if row["created_at"] is not None else now_ms()
        updated_at = row["updated_at"] if row["updated_at"] is not None else created_at
        return cls(
            id=str(row["id"]),
            name=row["name"] or DEFAULT_ORIGINAL_NAME,
            created_at=created_at,
            updated_at=updated_at,
            folder=row["folder"],
            is_favorite=bool(row["is_favorite"]),
            deleted=bool(row["deleted"]),
            sync_state=SyncState.parse(row["sync_state"]),
            blob=bytes(row["blob"]) if row["blob"] is not None else b"",
            content_type=row["content_type"] or DEFAULT_CONTENT_TYPE,
        )


@dataclass
class RemoteMetaItem:
    """Client-side view of one entry of the server's id -> metadata map."""
    id: str
    created_at: int
    updated_at: int
    folder: Optional[str] = None
    favorite: bool = False
    deleted: bool = False
    original_name: str = DEFAULT_ORIGINAL_NAME
    key: Optional[str] = None

    @property
    def effective_updated_at(self) -> int:
        return self.updated_at or self.created_at

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteMetaItem":
        """Creates an item from the camelCase dict sent by the server."""
        item_id = data.get("id")
        if not item_id:
            raise ValueError(f"Remote item without id: {data}")
        created_at = data.get("createdAt")
        created_at = int(created_at) if isinstance(created_at, (int, float)) else 0
        updated_at = data.get("updatedAt")
        updated_at = int(updated_at) if isinstance(updated_at, (int, float)) else created_at
        folder = data.get("folder")
        return cls(
            id=str(item_id),
            created_at=created_at,
            updated_at=updated_at,
            folder=str(folder) if folder is not None else None,
            favorite=bool(data.get("favorite", False)),
            deleted=bool(data.get("deleted", False)),
            original_name=data.get("originalName") or DEFAULT_ORIGINAL_NAME,
            key=data.get("key"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "key": self.key,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "folder": self.folder,
            "favorite": self.favorite,
            "deleted": self.deleted,
            "originalName": self.original_name,
        }


@dataclass
class SyncResult:
    """Summary of one push/pull pass."""
    ok: bool = True
    uploaded: int = 0
    updated: int = 0
    deleted: int = 0
    pulled: int = 0
    merged: int = 0
    tombstoned: int = 0
    failed: int = 0
    pull_skipped: bool = False
    skipped: bool = False
    errors: List[str] = field(default_factory=list)
    last_sync_at: Optional[int] = None

    @classmethod
    def skipped_pass(cls) -> "SyncResult":
        """Zero-effect result returned when another pass is already running."""
        return cls(ok=True, skipped=True)

    def record_failure(self, message: str):
        self.failed += 1
        self.errors.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
