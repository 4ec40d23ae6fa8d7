# geoattend/backend/api/utilities/limiter.py

from fastapi import Request
import jwt

# Gerekli slowapi ve ayar importları
from slowapi import Limiter
from slowapi.util import get_remote_address

# config.py'den ayarları import et
from ...config.config import settings
from ...tools.request_context import extract_credential

def get_limiter_key(request: Request) -> str:
    """
    Rate limit için bir anahtar döndürür.
    Eğer istekte geçerli bir JWT token varsa (başlık ya da cookie), kullanıcı kimliğini
    anahtar olarak kullanır. Yoksa, istemcinin IP adresini kullanır.
    """
    token = extract_credential(request.headers, request.cookies)
    if token:
        try:
            # Token'ın süresinin dolup dolmadığını kontrol etmeye gerek yok,
            # sadece içindeki kullanıcı kimliğini almak istiyoruz.
            payload = jwt.decode(
                token,
                settings.SECRET_KEY,
                algorithms=[settings.ALGORITHM],
                options={"verify_exp": False}
            )
            subject = payload.get("sub")
            if subject:
                return f"user:{subject}"
        except jwt.PyJWTError:
            # Token geçersizse, IP bazlı limite geri dön.
            return get_remote_address(request)

    # Güvenli fallback: Her zaman bir anahtar döndür.
    return get_remote_address(request)

# Limiter'ı Redis depolaması ile başlat. RATE_LIMITER_REDIS_URL yoksa bellek içi depolama kullanılır.
limiter = Limiter(
    key_func=get_limiter_key,
    storage_uri=settings.RATE_LIMITER_REDIS_URL or "memory://",
    enabled=settings.RATE_LIMIT_ENABLED,
)
