# snapvault_Server_API/app/core/Sync/transport.py
from abc import ABC, abstractmethod
from typing import List, Optional, Dict, Any, Tuple
import json
import logging

import requests

from .models import PhotoRecord, RemoteMetaItem, DEFAULT_CONTENT_TYPE
from .exceptions import TransportError, RemoteNotFoundError

logger = logging.getLogger(__name__)


class SyncTransport(ABC):
    """
    Abstract base class for the wire calls one sync pass needs.
    Every method raises TransportError (RemoteNotFoundError for 404) on failure.
    """

    @abstractmethod
    def create_upload_url(self, device_id: str, record: PhotoRecord) -> Dict[str, Any]:
        """Returns at least {'url', 'objectKey'} for a signed single-object PUT."""
        pass

    @abstractmethod
    def upload_blob(self, url: str, blob: bytes, content_type: Optional[str] = None) -> None:
        pass

    @abstractmethod
    def confirm_upload(self, device_id: str, record: PhotoRecord) -> None:
        pass

    @abstractmethod
    def update_flags(self, device_id: str, record: PhotoRecord) -> None:
        pass

    @abstractmethod
    def delete_remote(self, device_id: str, photo_id: str) -> None:
        pass

    @abstractmethod
    def get_sync_list(self, device_id: str) -> List[RemoteMetaItem]:
        pass

    @abstractmethod
    def get_download_url(self, device_id: str, photo_id: str) -> str:
        pass

    @abstractmethod
    def fetch_blob(self, url: str) -> Tuple[bytes, Optional[str]]:
        """Returns the object bytes and the response content type, if any."""
        pass


class HttpApiTransport(SyncTransport):
    """Talks JSON to the snapvault API and raw bytes to the object store through signed URLs."""

    def __init__(self, base_url: str, timeout: int = 30, session: Optional[requests.Session] = None):
        if not base_url.endswith('/'):
            base_url += '/'
        self.base_url = base_url
        self.timeout = timeout
        self.session = session or requests.Session()
        logger.info(f"HTTP Transport initialized for URL: {self.base_url}")

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path.lstrip('/')}"

    @staticmethod
    def _check(response: requests.Response, operation: str):
        if response.status_code == 404:
            raise RemoteNotFoundError("Remote entry not found", status_code=404, operation=operation)
        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            raise TransportError(f"HTTP error: {e}", status_code=response.status_code, operation=operation) from e

    def _request_json(self, method: str, path: str, operation: str, *, payload: Optional[Dict[str, Any]] = None,
                      params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = self._url(path)
        logger.debug(f"{method} {url} ({operation})")
        try:
            response = self.session.request(method, url, json=payload, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.warning(f"HTTP request failed during {operation}: {e}")
            raise TransportError(f"Request failed: {e}", operation=operation) from e
        self._check(response, operation)
        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise TransportError(f"Invalid JSON response received: {e}", status_code=response.status_code,
                                 operation=operation) from e
        if not isinstance(data, dict):
            raise TransportError(f"Unexpected response type {type(data).__name__}", operation=operation)
        return data

    def health(self) -> bool:
        try:
            return bool(self._request_json("GET", "api/health", "health").get("ok"))
        except TransportError:
            return False

    def create_upload_url(self, device_id: str, record: PhotoRecord) -> Dict[str, Any]:
        payload = {
            "deviceId": device_id,
            "id": record.id,
            "contentType": record.content_type or DEFAULT_CONTENT_TYPE,
            "originalName": record.name,
            "folder": record.folder,
            "favorite": record.is_favorite,
            "createdAt": record.created_at,
            "updatedAt": record.updated_at,
        }
        data = self._request_json("POST", "api/upload-url", "upload-url", payload=payload)
        if not data.get("url"):
            raise TransportError("upload-url response carried no url", operation="upload-url")
        return data

    def upload_blob(self, url: str, blob: bytes, content_type: Optional[str] = None) -> None:
        headers = {"Content-Type": content_type or DEFAULT_CONTENT_TYPE}
        try:
            response = self.session.put(url, data=blob, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Blob upload failed: {e}", operation="blob-put") from e
        self._check(response, "blob-put")
        logger.debug(f"Uploaded {len(blob)} bytes")

    def confirm_upload(self, device_id: str, record: PhotoRecord) -> None:
        payload = {
            "deviceId": device_id,
            "id": record.id,
            "folder": record.folder,
            "favorite": record.is_favorite,
            "createdAt": record.created_at,
            "updatedAt": record.updated_at,
            "originalName": record.name,
        }
        self._request_json("POST", "api/upload-complete", "upload-complete", payload=payload)

    def update_flags(self, device_id: str, record: PhotoRecord) -> None:
        payload = {
            "deviceId": device_id,
            "id": record.id,
            "folder": record.folder,
            "favorite": record.is_favorite,
            "updatedAt": record.updated_at,
        }
        self._request_json("POST", "api/update", "update", payload=payload)

    def delete_remote(self, device_id: str, photo_id: str) -> None:
        self._request_json("POST", "api/delete", "delete", payload={"deviceId": device_id, "id": photo_id})

    def get_sync_list(self, device_id: str) -> List[RemoteMetaItem]:
        data = self._request_json("GET", "api/sync", "sync", params={"deviceId": device_id})
        raw_items = data.get("items")
        if not isinstance(raw_items, list):
            raise TransportError("Invalid sync response: 'items' is not a list", operation="sync")
        items = []
        for raw in raw_items:
            try:
                items.append(RemoteMetaItem.from_dict(raw))
            except (ValueError, TypeError, AttributeError) as e:
                logger.error(f"Failed to parse remote item {raw!r}: {e}")
                continue
        logger.info(f"Fetched {len(items)} remote items.")
        return items

    def get_download_url(self, device_id: str, photo_id: str) -> str:
        data = self._request_json("POST", "api/download-url", "download-url",
                                  payload={"deviceId": device_id, "id": photo_id})
        url = data.get("url")
        if not url:
            raise TransportError("download-url response carried no url", operation="download-url")
        return url

    def fetch_blob(self, url: str) -> Tuple[bytes, Optional[str]]:
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Blob download failed: {e}", operation="blob-get") from e
        self._check(response, "blob-get")
        content_type = response.headers.get("Content-Type")
        return response.content, content_type
