import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """
    Ortam değişkenlerinden ayarları doğrudan ve basit bir şekilde tutan sınıf.
    """
    # Veritabanı
    DATABASE_URL: str = os.environ.get("DATABASE_URL")

    # Redis: oturumlar ve rate limiter
    APPLICATION_REDIS_URL: str = os.environ.get("APPLICATION_REDIS_URL")
    RATE_LIMITER_REDIS_URL: str = os.environ.get("RATE_LIMITER_REDIS_URL")
    RATE_LIMIT_ENABLED: bool = _env_bool("RATE_LIMIT_ENABLED", True)

    # JWT ve oturum
    SECRET_KEY: str = os.environ.get("SECRET_KEY")
    ALGORITHM: str = os.environ.get("ALGORITHM", "HS256")
    SESSION_TTL_SECONDS: int = int(os.environ.get("SESSION_TTL_SECONDS", 3600))

    ENVIRONMENT: str = os.environ.get("ENVIRONMENT", "development")

    # Geofence (kampüs merkezi ve yarıçapı metre cinsinden)
    DISABLE_GEO_LOCK: bool = _env_bool("DISABLE_GEO_LOCK")
    CAMPUS_LAT: str = os.environ.get("CAMPUS_LAT")
    CAMPUS_LON: str = os.environ.get("CAMPUS_LON")
    CAMPUS_RADIUS: str = os.environ.get("CAMPUS_RADIUS")
    CAMPUS_UTC_OFFSET_HOURS: float = float(os.environ.get("CAMPUS_UTC_OFFSET_HOURS", 0))

    # Cihaz parmak izi için bcrypt iş faktörü (~100ms için 10)
    DEVICE_HASH_ROUNDS: int = int(os.environ.get("DEVICE_HASH_ROUNDS", 10))

    # Bakım görevleri
    AUDIT_RETENTION_DAYS: int = int(os.environ.get("AUDIT_RETENTION_DAYS", 0))
    TOKEN_SWEEP_MINUTES: int = int(os.environ.get("TOKEN_SWEEP_MINUTES", 15))

    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")
    LOG_DIR: str = os.environ.get("LOG_DIR", "logs")
    CORS_ORIGINS: list = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]

    @property
    def GEOFENCE_ENABLED(self) -> bool:
        # Sadece geliştirme ortamında ve açıkça istenirse kapatılabilir.
        return not (self.ENVIRONMENT == "development" and self.DISABLE_GEO_LOCK)


# Ayarların tek ve içe aktarılabilir bir örneğini oluştur
settings = Config()
