# snapvault_Server_API/app/core/Sync/device_identity.py
import json
import logging
import os
import threading
from pathlib import Path
from typing import Optional, Union

from .exceptions import DeviceIdentityError
from .models import generate_id

logger = logging.getLogger(__name__)


class DeviceIdentity:
    """
    Stable per-installation id naming this device's remote namespace.

    Kept in two places: a small JSON cache file (fast path) and the `deviceId`
    setting of the photo database (durable store). Whichever copy survives is
    used to restore the other.
    """

    def __init__(self, db, cache_path: Optional[Union[str, Path]] = None):
        self.db = db
        self.cache_path = Path(cache_path) if cache_path else None
        self._device_id: Optional[str] = None
        self._lock = threading.Lock()

    def _read_cache(self) -> Optional[str]:
        if not self.cache_path or not self.cache_path.exists():
            return None
        try:
            with open(self.cache_path, 'r', encoding='utf-8') as f:
                value = json.load(f).get("deviceId")
        except (OSError, json.JSONDecodeError, AttributeError) as e:
            logger.warning(f"Unreadable device id cache {self.cache_path}: {e}")
            return None
        return value.strip() if isinstance(value, str) and value.strip() else None

    def _write_cache(self, device_id: str) -> bool:
        if not self.cache_path:
            return False
        tmp_path = self.cache_path.with_suffix(self.cache_path.suffix + ".tmp")
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump({"deviceId": device_id}, f)
            os.replace(tmp_path, self.cache_path)
            return True
        except OSError as e:
            logger.warning(f"Could not write device id cache {self.cache_path}: {e}")
            return False

    def _read_store(self) -> Optional[str]:
        try:
            return self.db.get_stored_device_id()
        except Exception as e:
            logger.warning(f"Could not read device id from the database: {e}")
            return None

    def _write_store(self, device_id: str) -> bool:
        try:
            self.db.set_stored_device_id(device_id)
            return True
        except Exception as e:
            logger.warning(f"Could not persist device id to the database: {e}")
            return False

    def get_device_id(self) -> str:
        """
        Returns the device id, creating and persisting one on first use.

        Raises:
            DeviceIdentityError: A new id could not be stored anywhere.
        """
        if self._device_id:
            return self._device_id
        with self._lock:
            if self._device_id:
                return self._device_id

            device_id = self._read_cache()
            if device_id:
                if self._read_store() != device_id:
                    self._write_store(device_id)
            else:
                device_id = self._read_store()
                if device_id:
                    self._write_cache(device_id)

            if not device_id:
                device_id = generate_id()
                stored = self._write_store(device_id)
                cached = self._write_cache(device_id)
                if not (stored or cached):
                    raise DeviceIdentityError("Device id could not be persisted to any store.")
                logger.info(f"Created new device id {device_id}")

            self._device_id = device_id
            return device_id
