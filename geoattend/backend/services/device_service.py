import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional
from uuid import uuid4

from ..config.config import settings
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import DeviceBinding, DeviceBindingWithUser, User
from ..tools import device_fingerprint
from ..tools.audit_sink import AuditAction, AuditSink
from ..tools.clock import utcnow
from ..tools.device_fingerprint import DeviceDataError
from ..tools.request_context import RequestContext
from .errors import AuthorizationError, ConflictError, InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)


class DeviceService:
    """
    Kullanıcı başına tek cihaz bağlama, sorgulama ve doğrulama.
    Ham parmak izi hiçbir zaman saklanmaz; sadece bcrypt hash'i.
    """
    def __init__(self, db_client: AsyncPostgresClient, audit: AuditSink,
                 hash_rounds: Optional[int] = None, clock: Callable[[], datetime] = utcnow):
        self.db_client = db_client
        self.audit = audit
        self.hash_rounds = hash_rounds or settings.DEVICE_HASH_ROUNDS
        self._clock = clock

    async def bind(self, user: User, user_agent, platform, additional_entropy,
                   context: RequestContext) -> DeviceBinding:
        if await self.db_client.get_device_binding(user.id):
            await self.audit.record(user.id, AuditAction.DEVICE_BIND_FAIL, context,
                                    details={"reason": "User already has a device binding"})
            raise ConflictError(
                "Device already bound. Each user can only bind one device.",
                code="DEVICE_ALREADY_BOUND",
                hint="Contact your administrator if you need to change your registered device.",
            )

        try:
            user_agent, platform, additional_entropy = device_fingerprint.validate_device_data(
                user_agent, platform, additional_entropy
            )
        except DeviceDataError as e:
            await self.audit.record(user.id, AuditAction.DEVICE_BIND_FAIL, context, details={"reason": str(e)})
            raise InvalidInputError(str(e), code="INVALID_DEVICE_DATA")

        fp = device_fingerprint.fingerprint(user_agent, platform, additional_entropy)
        # bcrypt CPU'ya bağlı, event loop'u bloklamasın.
        device_hash = await asyncio.to_thread(device_fingerprint.bind_hash, fp, self.hash_rounds)

        now = self._clock()
        binding = await self.db_client.create_device_binding(DeviceBinding(
            id=str(uuid4()), user_id=user.id, device_hash=device_hash, created_at=now, updated_at=now,
        ))
        if binding is None:
            # Eşzamanlı ikinci bind isteği unique kısıta takıldı.
            await self.audit.record(user.id, AuditAction.DEVICE_BIND_FAIL, context,
                                    details={"reason": "Concurrent binding detected"})
            raise ConflictError("Device already bound. Each user can only bind one device.",
                                code="DEVICE_ALREADY_BOUND")

        await self.audit.record(user.id, AuditAction.DEVICE_BIND, context, details={
            "platform": platform,
            "userAgent": user_agent[:100],
            "bindingId": binding.id,
        })
        logger.info(f"[DEVICE] Successfully bound device for user {user.id}")
        return binding

    async def get_info(self, user: User) -> DeviceBinding:
        binding = await self.db_client.get_device_binding(user.id)
        if binding is None:
            raise NotFoundError("No device binding found.", code="DEVICE_NOT_BOUND",
                                hint="Please bind your device first to mark attendance")
        return binding

    async def unbind(self, admin: User, target_user_id: Optional[str], context: RequestContext) -> DeviceBinding:
        if not target_user_id:
            raise InvalidInputError("userId query parameter is required.")
        binding = await self.db_client.get_device_binding(target_user_id)
        if binding is None:
            raise NotFoundError("No device binding found.", code="DEVICE_NOT_BOUND")

        await self.db_client.delete_device_binding(target_user_id)
        await self.audit.record(target_user_id, AuditAction.DEVICE_UNBIND, context, details={
            "reason": "Device unbound by admin",
            "bindingId": binding.id,
            "unboundBy": admin.id,
        })
        logger.info(f"[DEVICE] Device unbound for user {target_user_id} by admin {admin.id}")
        return binding

    async def list_bindings(self) -> List[DeviceBindingWithUser]:
        return await self.db_client.list_device_bindings()

    async def verify_request_device(self, user: User, context: RequestContext) -> DeviceBinding:
        """
        Recomputes the fingerprint of the requesting device and checks it against the stored hash.

        Raises:
            InvalidInputError: DEVICE_INFO_MISSING, no user agent/platform on the request.
            AuthorizationError: DEVICE_NOT_BOUND or DEVICE_MISMATCH.
        """
        if not context.user_agent or not context.platform:
            raise InvalidInputError("Device information is required.", code="DEVICE_INFO_MISSING")

        binding = await self.db_client.get_device_binding(user.id)
        if binding is None:
            raise AuthorizationError("Device not bound. Please bind your device first.", code="DEVICE_NOT_BOUND",
                                     requiresBinding=True)

        fp = device_fingerprint.fingerprint(context.user_agent, context.platform, context.device_entropy)
        matches = await asyncio.to_thread(device_fingerprint.verify, fp, binding.device_hash)
        if not matches:
            raise AuthorizationError("This is not your registered device.", code="DEVICE_MISMATCH")
        return binding
