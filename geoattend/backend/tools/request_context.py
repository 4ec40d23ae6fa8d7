# geoattend/backend/tools/request_context.py

from typing import Any, Dict, Mapping, Optional

from fastapi import Request
from pydantic import BaseModel, ConfigDict, Field

from .device_fingerprint import extract_device_info

AUTH_COOKIE_NAME = "token"


def extract_client_ip(headers: Mapping[str, str], remote_address: Optional[str]) -> str:
    """
    İstemcinin gerçek IP adresini proxy başlıklarından okur.
    X-Forwarded-For listesindeki ilk adres, sonra X-Real-IP, sonra soket adresi,
    hiçbiri yoksa "unknown". Eksik başlıklar için asla hata fırlatmaz.
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return remote_address or "unknown"


def extract_credential(headers: Mapping[str, str], cookies: Mapping[str, str]) -> Optional[str]:
    """Bearer token from the Authorization header, else the auth cookie."""
    header = headers.get("authorization")
    if header and header.lower().startswith("bearer "):
        return header[len("bearer "):].strip() or None
    return cookies.get(AUTH_COOKIE_NAME) or None


class RequestContext(BaseModel):
    """
    Immutable snapshot of everything the audit sink and the pipeline stages need
    from an HTTP request, so nothing downstream touches the framework request.
    """
    model_config = ConfigDict(frozen=True)

    method: str = "GET"
    path: str = "/"
    ip_address: str = "unknown"
    user_agent: str = ""
    platform: str = ""
    device_entropy: Optional[str] = None
    credential: Optional[str] = None
    body: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_request(cls, request: Request, body: Optional[Dict[str, Any]] = None) -> "RequestContext":
        device = extract_device_info(request.headers)
        return cls(
            method=request.method,
            path=request.url.path,
            ip_address=extract_client_ip(request.headers, request.client.host if request.client else None),
            user_agent=device["user_agent"],
            platform=device["platform"],
            device_entropy=device["entropy"],
            credential=extract_credential(request.headers, request.cookies),
            body=body if isinstance(body, dict) else {},
        )
