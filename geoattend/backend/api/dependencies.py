#geoattend/backend/api/dependencies.py
from datetime import datetime
from typing import Callable, Optional

from fastapi import Request, Depends
import redis.asyncio as redis
import asyncpg

from ..config.config import settings
from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..services.attendance_service import AttendanceService
from ..services.audit_service import AuditService
from ..services.auth_service import AuthService
from ..services.device_service import DeviceService
from ..services.pipeline import VerificationPipeline, build_verification_pipeline
from ..services.token_service import TokenService
from ..tools.audit_sink import AuditSink
from ..tools.clock import utcnow
from ..tools.geofence import GeoConfig, GeoConfigError


def get_redis_pool(request: Request) -> redis.ConnectionPool:
    """
    Uygulamanın state'inden Redis bağlantı havuzunu alır ve bir bağımlılık olarak sağlar.
    """
    return request.app.state.redis_pool

def get_postgres_pool(request: Request) -> asyncpg.Pool:
    """
    Uygulamanın state'inden PostgreSQL bağlantı havuzunu alır ve bir bağımlılık olarak sağlar.
    """
    return request.app.state.postgres_pool


def get_db_client(postgres_pool: asyncpg.Pool = Depends(get_postgres_pool)) -> AsyncPostgresClient:
    return AsyncPostgresClient(pool=postgres_pool)


def get_redis_client(redis_pool: redis.ConnectionPool = Depends(get_redis_pool)) -> RedisClient:
    return RedisClient(pool=redis_pool)


def get_geo_config(request: Request) -> Optional[GeoConfig]:
    """Başlangıçta yüklenen kampüs ayarı. Geofence kapalıysa None."""
    geo_config = getattr(request.app.state, "geo_config", None)
    if geo_config is None and settings.GEOFENCE_ENABLED:
        # Geofence açıkken ayar yoksa istek reddedilir, sessizce atlanmaz.
        raise GeoConfigError("Geofence configuration is not loaded")
    return geo_config


def get_clock() -> Callable[[], datetime]:
    return utcnow


def get_audit_sink(db_client: AsyncPostgresClient = Depends(get_db_client)) -> AuditSink:
    return AuditSink(db_client)


def get_auth_service(
    redis_client: RedisClient = Depends(get_redis_client),
    db_client: AsyncPostgresClient = Depends(get_db_client),
    audit: AuditSink = Depends(get_audit_sink),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> AuthService:
    """
    Her istek için yeni bir AuthService nesnesi oluşturur.

    Bu fonksiyon, FastAPI'nin Bağımlılık Enjeksiyonu sistemi tarafından kullanılır.
    Uygulama başlangıcında oluşturulan paylaşımlı havuzlar üzerinden kurulan
    istemcileri servise verir.
    """
    return AuthService(redis_client=redis_client, db_client=db_client, audit=audit, clock=clock)


def get_token_service(
    db_client: AsyncPostgresClient = Depends(get_db_client),
    audit: AuditSink = Depends(get_audit_sink),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> TokenService:
    return TokenService(db_client=db_client, audit=audit, clock=clock)


def get_device_service(
    db_client: AsyncPostgresClient = Depends(get_db_client),
    audit: AuditSink = Depends(get_audit_sink),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> DeviceService:
    return DeviceService(db_client=db_client, audit=audit, clock=clock)


def get_attendance_service(
    db_client: AsyncPostgresClient = Depends(get_db_client),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> AttendanceService:
    return AttendanceService(db_client=db_client, clock=clock)


def get_audit_service(
    db_client: AsyncPostgresClient = Depends(get_db_client),
    audit: AuditSink = Depends(get_audit_sink),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> AuditService:
    return AuditService(db_client=db_client, audit=audit, clock=clock)


def get_verification_pipeline(
    auth_service: AuthService = Depends(get_auth_service),
    device_service: DeviceService = Depends(get_device_service),
    attendance_service: AttendanceService = Depends(get_attendance_service),
    audit: AuditSink = Depends(get_audit_sink),
    geo_config: Optional[GeoConfig] = Depends(get_geo_config),
) -> VerificationPipeline:
    return build_verification_pipeline(
        auth_service=auth_service,
        device_service=device_service,
        attendance_service=attendance_service,
        audit=audit,
        geo_config=geo_config,
        environment=settings.ENVIRONMENT,
    )
