from datetime import datetime, timedelta, timezone

import pytest

from holdledger.coordinator import ReconciliationCoordinator
from holdledger.database import make_engine, make_session_factory
from holdledger.ledger import LedgerStore


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'ledger.db'}"


@pytest.fixture
def open_ledger(database_url):
    engines = []

    def _open(url=database_url):
        engine = make_engine(url)
        engines.append(engine)
        return LedgerStore(engine, make_session_factory(engine))

    yield _open
    for engine in engines:
        engine.dispose()


@pytest.fixture
def ledger(open_ledger):
    return open_ledger()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway(mocker):
    return mocker.Mock(spec=["capture", "cancel"])


@pytest.fixture
def coordinator(ledger, gateway, clock):
    return ReconciliationCoordinator(ledger, gateway, clock=clock)
