from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from geoattend.backend.models.db_models import AuditLog, SessionToken
from geoattend.backend.tasks.cron import audit_retention_task, purge_expired_session_tokens_task
from fakes import FakeDb, MutableClock


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.mark.asyncio
class TestCronTasks:

    async def test_purge_removes_only_expired_tokens(self, clock):
        db = FakeDb()
        db.tokens["old"] = SessionToken(id="old", class_id="class-1", token="a" * 64,
                                        expires_at=clock() - timedelta(minutes=1))
        db.tokens["live"] = SessionToken(id="live", class_id="class-2", token="b" * 64,
                                         expires_at=clock() + timedelta(minutes=1))

        deleted = await purge_expired_session_tokens_task(db, clock=clock)

        assert deleted == 1
        assert list(db.tokens) == ["live"]

    async def test_purge_swallows_database_errors(self, clock):
        """
        Senaryo: Veritabanı geçici olarak erişilemez.
        Beklenti: Görev hata fırlatmaz, bir sonraki turda tekrar denenir.
        """
        db = AsyncMock()
        db.purge_expired_session_tokens.side_effect = ConnectionError("db down")
        assert await purge_expired_session_tokens_task(db, clock=clock) == 0

    async def test_audit_retention_is_recorded_as_system(self, clock):
        db = FakeDb()
        db.audit_logs.append(AuditLog(user_id="student-1", action="LOGIN", timestamp=clock() - timedelta(days=40)))
        db.audit_logs.append(AuditLog(user_id="student-1", action="LOGIN", timestamp=clock() - timedelta(days=5)))

        deleted = await audit_retention_task(db, 30, clock=clock)

        assert deleted == 1
        assert [log.action for log in db.audit_logs] == ["LOGIN", "AUDIT_CLEANUP"]
        assert db.audit_logs[-1].user_id == "system"

    async def test_audit_retention_swallows_errors(self, clock):
        db = AsyncMock()
        db.delete_audit_logs_before.side_effect = ConnectionError("db down")
        assert await audit_retention_task(db, 30, clock=clock) == 0
