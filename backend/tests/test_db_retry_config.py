import pytest
from sqlalchemy.exc import OperationalError

from crm_backend.core.config import settings
from crm_backend.core.db_retry import backoff_delay, with_db_retry


class DummyOrig(Exception):
    def __init__(self, code: int, message: str, sqlstate: str | None = None):
        super().__init__(message)
        self.sqlstate = sqlstate
        self.args = (code, message)


class DummySession:
    def __init__(self):
        self.rollback_calls = 0

    async def rollback(self):
        self.rollback_calls += 1


@pytest.fixture
def fast_retries(monkeypatch):
    monkeypatch.setattr(settings, "DB_RETRY_ATTEMPTS", 2)
    monkeypatch.setattr(settings, "DB_RETRY_BASE_DELAY", 0.0)
    monkeypatch.setattr(settings, "DB_RETRY_JITTER", 0.0)


@pytest.mark.anyio
async def test_db_retry_respects_config(fast_retries):
    session = DummySession()
    calls = {"count": 0}

    async def flaky_operation():
        calls["count"] += 1
        if calls["count"] == 1:
            raise OperationalError("stmt", {}, DummyOrig(1213, "deadlock"))
        return "ok"

    result = await with_db_retry(session, flaky_operation)

    assert result == "ok"
    assert calls["count"] == 2
    assert session.rollback_calls == 1


@pytest.mark.anyio
async def test_retries_exhausted_reraises(fast_retries):
    session = DummySession()
    calls = {"count": 0}

    async def always_locked():
        calls["count"] += 1
        raise OperationalError("stmt", {}, DummyOrig(1205, "Lock wait timeout exceeded"))

    with pytest.raises(OperationalError):
        await with_db_retry(session, always_locked)

    assert calls["count"] == 2
    assert session.rollback_calls == 1


@pytest.mark.anyio
async def test_non_transient_error_not_retried(fast_retries):
    session = DummySession()
    calls = {"count": 0}

    async def broken_operation():
        calls["count"] += 1
        raise OperationalError("stmt", {}, DummyOrig(1146, "Table doesn't exist"))

    with pytest.raises(OperationalError):
        await with_db_retry(session, broken_operation)

    assert calls["count"] == 1
    assert session.rollback_calls == 0


@pytest.mark.anyio
async def test_sqlite_busy_is_retried(fast_retries):
    session = DummySession()
    calls = {"count": 0}

    async def busy_then_ok():
        calls["count"] += 1
        if calls["count"] == 1:
            raise OperationalError("stmt", {}, Exception("database is locked"))
        return calls["count"]

    assert await with_db_retry(session, busy_then_ok, label="campaign_update:1") == 2
    assert session.rollback_calls == 1


def test_backoff_doubles_per_attempt():
    assert backoff_delay(1, 0.05, 0.0) == 0.05
    assert backoff_delay(3, 0.05, 0.0) == 0.2
    assert 0.1 <= backoff_delay(2, 0.05, 0.01) <= 0.11
