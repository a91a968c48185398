"""
测试公共夹具
"""

import secrets

import pytest

from phivault.crypto.key_manager import KeyManager
from phivault.crypto.phi_encryption import PHIEncryptionService
from phivault.database.operations import DatabaseManager


@pytest.fixture
def key_hex():
    return secrets.token_hex(32)


@pytest.fixture
def other_key_hex():
    return secrets.token_hex(32)


@pytest.fixture
def key_manager(key_hex):
    return KeyManager.from_hex(key_hex)


@pytest.fixture
def service(key_manager):
    return PHIEncryptionService(key_manager)


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'practice.db'}"


@pytest.fixture
def db_manager(db_url):
    manager = DatabaseManager(db_url)
    yield manager
    manager.dispose()
