# conftest.py
from types import SimpleNamespace

import pytest

from snapvault_Server_API.app.core.DB_Management.Photos_DB import PhotosDatabase
from snapvault_Server_API.app.core.Sync import SyncManager, DeviceIdentity
from snapvault_Server_API.tests.test_utils import InProcessTransport, make_server


@pytest.fixture
def server():
    store = make_server()
    yield store
    store.meta_db.close_connection()


@pytest.fixture
def bucket():
    return {}


@pytest.fixture
def make_device(tmp_path, server, bucket):
    """Factory for a client installation (own DB, own transport) talking to the shared server."""
    opened = []

    def _make(name: str, device_id: str = None):
        db = PhotosDatabase(tmp_path / f"{name}.sqlite")
        opened.append(db)
        if device_id:
            db.set_stored_device_id(device_id)
        transport = InProcessTransport(server, bucket)
        identity = DeviceIdentity(db, cache_path=tmp_path / f"{name}_device_id.json")
        manager = SyncManager(db, transport, identity)
        return SimpleNamespace(name=name, db=db, transport=transport, identity=identity, manager=manager)

    yield _make
    for db in opened:
        db.close_connection()
