from unittest.mock import AsyncMock

import pytest

from geoattend.backend.models.db_models import Role, User
from geoattend.backend.services.device_service import DeviceService
from geoattend.backend.services.errors import (
    AuthorizationError, ConflictError, InvalidInputError, NotFoundError,
)
from geoattend.backend.tools.audit_sink import AuditSink
from geoattend.backend.tools.device_fingerprint import verify, fingerprint
from geoattend.backend.tools.request_context import RequestContext
from fakes import FakeDb
from helpers import DEVICE_UA, OTHER_UA, seed

STUDENT = User(id="student-1", email="student1@campus.edu", name="Student One", role=Role.STUDENT)
ADMIN = User(id="admin-1", email="admin@campus.edu", name="Admin", role=Role.ADMIN)

BOUND_DEVICE = RequestContext(user_agent=DEVICE_UA, platform="Linux", ip_address="10.0.0.2")


@pytest.fixture
def db() -> FakeDb:
    db = FakeDb()
    seed(db)
    return db


@pytest.fixture
def service(db) -> DeviceService:
    return DeviceService(db_client=db, audit=AuditSink(db), hash_rounds=4)


@pytest.mark.asyncio
class TestBind:

    async def test_bind_stores_only_bcrypt_hash(self, service, db):
        binding = await service.bind(STUDENT, DEVICE_UA, "Linux", None, BOUND_DEVICE)

        stored = db.bindings["student-1"]
        assert stored.id == binding.id
        assert DEVICE_UA not in stored.device_hash
        assert stored.device_hash != fingerprint(DEVICE_UA, "Linux")
        assert verify(fingerprint(DEVICE_UA, "Linux"), stored.device_hash)
        assert db.actions("student-1") == ["DEVICE_BIND"]

    async def test_second_bind_is_rejected(self, service, db):
        """
        Senaryo: Kullanıcı ikinci bir cihaz bağlamaya çalışıyor.
        Beklenti: 409 DEVICE_ALREADY_BOUND, ilk bağlama değişmez.
        """
        await service.bind(STUDENT, DEVICE_UA, "Linux", None, BOUND_DEVICE)
        original = db.bindings["student-1"]

        with pytest.raises(ConflictError) as exc:
            await service.bind(STUDENT, OTHER_UA, "Windows", None, BOUND_DEVICE)

        assert exc.value.code == "DEVICE_ALREADY_BOUND"
        assert exc.value.status_code == 409
        assert "hint" in exc.value.to_dict()
        assert db.bindings["student-1"] == original
        assert db.actions("student-1") == ["DEVICE_BIND", "DEVICE_BIND_FAIL"]

    @pytest.mark.parametrize("user_agent, platform", [("tiny", "Linux"), (DEVICE_UA, "Amiga"), (None, "Linux")])
    async def test_invalid_device_data(self, service, db, user_agent, platform):
        with pytest.raises(InvalidInputError) as exc:
            await service.bind(STUDENT, user_agent, platform, None, BOUND_DEVICE)
        assert exc.value.code == "INVALID_DEVICE_DATA"
        assert db.bindings == {}
        assert db.actions("student-1") == ["DEVICE_BIND_FAIL"]

    async def test_concurrent_bind_loser_gets_conflict(self):
        db_client = AsyncMock()
        db_client.get_device_binding.return_value = None
        db_client.create_device_binding.return_value = None
        audit = AsyncMock()
        service = DeviceService(db_client=db_client, audit=audit, hash_rounds=4)

        with pytest.raises(ConflictError):
            await service.bind(STUDENT, DEVICE_UA, "Linux", None, BOUND_DEVICE)
        assert audit.record.await_args.args[1].value == "DEVICE_BIND_FAIL"


@pytest.mark.asyncio
class TestVerifyRequestDevice:

    async def test_matching_device(self, service, db):
        binding = await service.bind(STUDENT, DEVICE_UA, "Linux", None, BOUND_DEVICE)
        assert (await service.verify_request_device(STUDENT, BOUND_DEVICE)).id == binding.id

    async def test_entropy_must_match_too(self, service):
        await service.bind(STUDENT, DEVICE_UA, "Linux", "seed-123", BOUND_DEVICE)
        with pytest.raises(AuthorizationError):
            await service.verify_request_device(STUDENT, BOUND_DEVICE)
        with_entropy = BOUND_DEVICE.model_copy(update={"device_entropy": "seed-123"})
        await service.verify_request_device(STUDENT, with_entropy)

    async def test_other_device_is_mismatch(self, service):
        await service.bind(STUDENT, DEVICE_UA, "Linux", None, BOUND_DEVICE)
        other = RequestContext(user_agent=OTHER_UA, platform="Windows")
        with pytest.raises(AuthorizationError) as exc:
            await service.verify_request_device(STUDENT, other)
        assert exc.value.code == "DEVICE_MISMATCH"

    async def test_not_bound(self, service):
        with pytest.raises(AuthorizationError) as exc:
            await service.verify_request_device(STUDENT, BOUND_DEVICE)
        assert exc.value.code == "DEVICE_NOT_BOUND"

    async def test_missing_device_info(self, service):
        with pytest.raises(InvalidInputError) as exc:
            await service.verify_request_device(STUDENT, RequestContext(user_agent="", platform=""))
        assert exc.value.code == "DEVICE_INFO_MISSING"


@pytest.mark.asyncio
class TestAdminOperations:

    async def test_unbind_allows_rebinding(self, service, db):
        await service.bind(STUDENT, DEVICE_UA, "Linux", None, BOUND_DEVICE)
        await service.unbind(ADMIN, "student-1", RequestContext())

        assert db.bindings == {}
        unbind_log = db.audit_logs[-1]
        assert unbind_log.action == "DEVICE_UNBIND"
        assert unbind_log.user_id == "student-1"
        assert unbind_log.details["unboundBy"] == "admin-1"

        await service.bind(STUDENT, OTHER_UA, "Windows", None, BOUND_DEVICE)
        assert "student-1" in db.bindings

    async def test_unbind_requires_target(self, service):
        with pytest.raises(InvalidInputError):
            await service.unbind(ADMIN, None, RequestContext())

    async def test_unbind_unknown_binding(self, service):
        with pytest.raises(NotFoundError) as exc:
            await service.unbind(ADMIN, "student-2", RequestContext())
        assert exc.value.code == "DEVICE_NOT_BOUND"

    async def test_get_info_and_list(self, service):
        with pytest.raises(NotFoundError):
            await service.get_info(STUDENT)
        await service.bind(STUDENT, DEVICE_UA, "Linux", None, BOUND_DEVICE)

        assert (await service.get_info(STUDENT)).user_id == "student-1"
        bindings = await service.list_bindings()
        assert [b.user.email for b in bindings] == ["student1@campus.edu"]
