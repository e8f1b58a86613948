"""
Shared fixtures. Every test gets its own file-backed SQLite database
so transactions and write locks behave as they do in a real store.
"""
import pytest

from anchorkeeper.config import RequestPolicy
from anchorkeeper.database import Base, make_engine, make_session_factory
from anchorkeeper.dao.metadata_dao import MetadataRepository
from anchorkeeper.dao.request_dao import RequestRepository


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'anchorkeeper-test.db'}", lock_timeout=10)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def policy():
    return RequestPolicy()


@pytest.fixture
def request_repository(session_factory, policy):
    return RequestRepository(session_factory, policy)


@pytest.fixture
def metadata_repository(session_factory):
    return MetadataRepository(session_factory)
