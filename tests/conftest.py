from __future__ import annotations

import pytest

from store.blobs import BlobStore
from store.db import close_database, open_database


@pytest.fixture
def db(tmp_path):
    database = open_database(tmp_path / "test.db")
    yield database
    close_database(database)


@pytest.fixture
def blobs(db):
    return BlobStore(db)
