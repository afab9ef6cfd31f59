"""
End-to-end backup and restore against a real MongoDB.

Needs mongodump/mongorestore on PATH and CHERRYPICKER_TEST_MONGO_URI
pointing at a disposable server, e.g. mongodb://localhost:27017/.
"""

import os
import shutil

import pytest

from cherrypicker.backup import BackupService, SelectionScope
from cherrypicker.config import AppConfig, BackupPreset
from cherrypicker.presets import PresetStore
from cherrypicker.restore import RestoreOptions, RestoreService


MONGO_URI = os.environ.get('CHERRYPICKER_TEST_MONGO_URI')

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not MONGO_URI or not shutil.which('mongodump') or not shutil.which('mongorestore'),
        reason='needs CHERRYPICKER_TEST_MONGO_URI and the MongoDB database tools'
    ),
]

TEST_DATABASE = 'cherrypicker_it'


@pytest.fixture
def mongo():
    pymongo = pytest.importorskip('pymongo')
    client = pymongo.MongoClient(MONGO_URI, serverSelectionTimeoutMS=5000)
    client.drop_database(TEST_DATABASE)
    db = client[TEST_DATABASE]
    yield db
    client.drop_database(TEST_DATABASE)
    client.close()


@pytest.fixture
def seeded(mongo):
    mongo.users.insert_many([{'name': 'alice'}, {'name': 'bob'}, {'name': 'carol'}])
    mongo.products.insert_many([{'sku': 'a'}, {'sku': 'b'}, {'sku': 'c'}])
    mongo.orders.insert_many([{'total': 10}, {'total': 20}])
    return mongo


@pytest.fixture
def config(tmp_path):
    return AppConfig.model_validate({
        'backupDir': str(tmp_path / 'backups'),
        'connections': [{'name': 'it', 'uri': MONGO_URI, 'database': TEST_DATABASE}],
    })


def _clear(db):
    for name in ('users', 'products', 'orders'):
        db[name].delete_many({})


def test_preset_backup_restores_only_selected_collection(seeded, config):
    presets = PresetStore(config, store=None)
    presets.add(BackupPreset(name='users_only', source_name='it', selection_mode='include', collections=['users']))
    connection, scope = presets.resolve('users_only')

    archive = BackupService(config).create_backup(connection, scope)
    _clear(seeded)
    RestoreService(config).restore(connection, archive)

    assert seeded.users.count_documents({}) == 3
    assert seeded.products.count_documents({}) == 0
    assert seeded.orders.count_documents({}) == 0


def test_full_round_trip(seeded, config):
    connection = config.get_connection('it')

    archive = BackupService(config).create_backup(connection, SelectionScope.everything())
    seeded.client.drop_database(TEST_DATABASE)
    RestoreService(config).restore(connection, archive, RestoreOptions(drop=True))

    assert seeded.users.count_documents({}) == 3
    assert seeded.products.count_documents({}) == 3
    assert seeded.orders.count_documents({}) == 2
    assert BackupService(config).list_backups() == [os.path.basename(archive)]


def test_exclude_scope(seeded, config):
    connection = config.get_connection('it')

    archive = BackupService(config).create_backup(connection, SelectionScope.excluding(['orders']))
    seeded.client.drop_database(TEST_DATABASE)
    RestoreService(config).restore(connection, archive)

    assert seeded.users.count_documents({}) == 3
    assert seeded.products.count_documents({}) == 3
    assert 'orders' not in seeded.list_collection_names()
