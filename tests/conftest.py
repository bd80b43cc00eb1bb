# Storefront Test Suite - Shared Configuration and Fixtures
#
# This module provides:
# - A fresh in-memory SQLite app per test (relational backend)
# - A snapshot store on a temp file per test
# - A `storage` fixture parametrized over both backends, so every contract
#   test runs against SnapshotStorage and SqlStorage alike
# - Small catalog/user builders

import json

import pytest

from storefront import create_app
from storefront.extensions import db
from storefront.storage import SnapshotStorage, get_storage

# Low bcrypt cost keeps the suite fast; production default is 12.
TEST_ROUNDS = 4
TEST_DEFAULT_PASSWORD = "changeme"


def make_app(**overrides):
    config = {
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'STORAGE_BACKEND': 'sql',
        'BCRYPT_ROUNDS': TEST_ROUNDS,
        'DEFAULT_USER_PASSWORD': TEST_DEFAULT_PASSWORD,
    }
    config.update(overrides)
    return create_app(config)


@pytest.fixture(scope='function')
def app():
    """Create application for testing, with an app context pushed."""
    app = make_app()
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def sql_storage(app):
    """Relational store with every table emptied (schema kept)."""
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    return get_storage()


@pytest.fixture(scope='function')
def snapshot_path(tmp_path):
    return tmp_path / "data.json"


@pytest.fixture(scope='function')
def snapshot_storage(snapshot_path):
    """Snapshot store over an empty document (no seed)."""
    snapshot_path.write_text("{}", encoding="utf-8")
    return SnapshotStorage(
        snapshot_path,
        default_password=TEST_DEFAULT_PASSWORD,
        bcrypt_rounds=TEST_ROUNDS,
    )


@pytest.fixture(scope='function', params=['sql', 'snapshot'])
def storage(request):
    """Both backends behind the same contract, starting empty."""
    if request.param == 'sql':
        return request.getfixturevalue('sql_storage')
    return request.getfixturevalue('snapshot_storage')


@pytest.fixture(scope='function')
def category(storage):
    return storage.add_category({"name": "ACCOUNT", "description": "Game accounts"})


@pytest.fixture(scope='function')
def product(storage, category):
    return storage.add_product({
        "category_id": category["id"],
        "name": "Grand Piece Online",
        "price": 49,
        "stock": 3,
        "features": ["Level 425-475", "Haki V1"],
        "supported_maps": ["Grand Piece Online"],
    })


@pytest.fixture(scope='function')
def member(storage):
    return storage.add_user({"username": "buyer", "password": "Password123!"})


def write_snapshot(path, document: dict) -> None:
    """Write a raw snapshot document, e.g. a legacy data.json."""
    path.write_text(json.dumps(document), encoding="utf-8")


def log_count(storage) -> int:
    return len(storage.list_recent_logs(limit=10_000))
