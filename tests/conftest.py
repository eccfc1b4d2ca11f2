import pytest

from adsync.database import build_engine, init_db
from adsync.storage.sql import StorageSet

from fakes import FakeConnector, fake_storage, make_settings


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sql_storage(engine):
    return StorageSet.from_engine(engine)


@pytest.fixture
def storage():
    return fake_storage()


@pytest.fixture
def connector():
    return FakeConnector()
