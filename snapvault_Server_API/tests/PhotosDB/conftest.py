# conftest.py
import pytest

from snapvault_Server_API.app.core.DB_Management.Photos_DB import PhotosDatabase


@pytest.fixture
def db_path(tmp_path):
    """Provides a temporary path for the database file for each test."""
    return tmp_path / "photos_test.sqlite"


@pytest.fixture
def db_instance(db_path):
    """Creates a fresh PhotosDatabase for each test."""
    db = PhotosDatabase(db_path)
    yield db
    db.close_connection()
