import pytest
from sqlalchemy.orm import sessionmaker

from leadsync.core.db import create_all, make_engine
from leadsync.services.event_bus import ChangeBus
from leadsync.services.store import Store


@pytest.fixture()
def store():
    # fresh in-memory database and change bus per test
    engine = make_engine("sqlite://")
    create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    yield Store(session_factory=factory, bus=ChangeBus())
    engine.dispose()
