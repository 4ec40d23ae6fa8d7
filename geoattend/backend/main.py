# geoattend/backend/main.py
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import redis.asyncio as redis
import asyncpg
from apscheduler.schedulers.asyncio import AsyncIOScheduler as Scheduler
import logging

# Rate limiting için gerekli importlar
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

# Proje ayarlarını ve modüllerini import edelim
from .config.config import settings
from .logging.logging_config import setup_logging
from .api import attendance, audit, auth, device

# Gerekli istemci ve görev (task) fonksiyonlarını import edelim
from .db.db_client import AsyncPostgresClient, init_connection
from .services.errors import ServiceError
from .tasks.cron import audit_retention_task, purge_expired_session_tokens_task
from .tools.geofence import load_geo_config

from .api.utilities.limiter import limiter

from fastapi.middleware.cors import CORSMiddleware

setup_logging(settings.LOG_LEVEL, settings.LOG_DIR)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Uygulama başlatıldığında ve durdurulduğunda çalışacak olan yaşam döngüsü yöneticisi.
    """
    logger.info("Uygulama başlatılıyor...")

    # Geofence açıkken kampüs ayarı okunamıyorsa uygulama hiç açılmaz.
    if settings.GEOFENCE_ENABLED:
        app.state.geo_config = load_geo_config(settings.CAMPUS_LAT, settings.CAMPUS_LON, settings.CAMPUS_RADIUS)
        logger.info(f"Geofence etkin: {app.state.geo_config.model_dump()}")
    else:
        app.state.geo_config = None
        logger.warning("Geofence devre dışı (development + DISABLE_GEO_LOCK).")

    app.state.postgres_pool = None
    app.state.redis_pool = None
    app.state.scheduler = None

    try:
        postgres_pool = await asyncpg.create_pool(
            dsn=settings.DATABASE_URL, min_size=5, max_size=20, init=init_connection
        )
        redis_pool = redis.ConnectionPool.from_url(
            settings.APPLICATION_REDIS_URL, decode_responses=True
        )

        app.state.postgres_pool = postgres_pool
        app.state.redis_pool = redis_pool
        logger.info("PostgreSQL ve Redis bağlantı havuzları başarıyla oluşturuldu.")

        db_client = AsyncPostgresClient(pool=postgres_pool)
        await db_client.init_schema()

        scheduler = Scheduler()
        scheduler.add_job(purge_expired_session_tokens_task, "interval", minutes=settings.TOKEN_SWEEP_MINUTES,
                          args=[db_client], id="sweep_session_tokens")
        if settings.AUDIT_RETENTION_DAYS > 0:
            scheduler.add_job(audit_retention_task, "interval", hours=24,
                              args=[db_client, settings.AUDIT_RETENTION_DAYS], id="audit_retention")
        scheduler.start()

        app.state.scheduler = scheduler
        logger.info("Zamanlanmış görevler (cron jobs) başarıyla başlatıldı.")

    except Exception as e:
        logger.error(f"HATA: Başlangıç sırasında bir hata oluştu: {e}", exc_info=True)

    yield

    logger.info("Uygulama kapatılıyor...")
    if app.state.scheduler:
        app.state.scheduler.shutdown()
        logger.info("Scheduler kapatıldı.")
    if app.state.postgres_pool:
        await app.state.postgres_pool.close()
        logger.info("PostgreSQL bağlantı havuzu kapatıldı.")
    if app.state.redis_pool:
        await app.state.redis_pool.disconnect()
        logger.info("Redis bağlantı havuzu kapatıldı.")


# Ana FastAPI uygulamasını oluştur
app = FastAPI(
    title="GeoAttend API",
    description="Cihaz ve konum doğrulamalı yoklama sistemi API'si",
    version="1.0.0",
    lifespan=lifespan
)

app.state.limiter = limiter

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={
        "error": "Invalid request payload",
        "code": "VALIDATION_ERROR",
        "details": [{"loc": list(err.get("loc", [])), "msg": err.get("msg")} for err in exc.errors()],
    })


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    # İç detaylar istemciye sızdırılmaz, sadece loglanır.
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "An unexpected error occurred.", "code": "INTERNAL_ERROR"})


# Rate limit aşıldığında çalışacak hata yöneticisini ekle
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# API router'larını uygulamaya dahil et
app.include_router(auth.router, prefix="/api/v1")
app.include_router(attendance.router, prefix="/api/v1")
app.include_router(device.router, prefix="/api/v1")
app.include_router(audit.router, prefix="/api/v1")

@app.get("/health", tags=["System"])
def health_check():
    """Uygulamanın ayakta ve sağlıklı olup olmadığını kontrol etmek için basit bir endpoint."""
    return {"status": "ok", "message": "GeoAttend API is running."}
