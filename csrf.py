import secrets
import time
from typing import Optional

from fastapi import Header, HTTPException
from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings

CSRF_HEADER = "X-CSRF-Token"


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.csrf_secret, salt="ledger-csrf")


def generate_csrf_token(max_age_hours: int = 2) -> str:
    issued = int(time.time())
    token_data = {
        "n": secrets.token_hex(8),
        "exp": issued + max_age_hours * 3600,
    }
    return _serializer().dumps(token_data)


def validate_csrf_token(token: Optional[str], max_age_hours: int = 2) -> bool:
    if not token:
        return False
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return False
    return int(time.time()) <= int(data.get("exp", 0))


def require_csrf(
    x_csrf_token: Optional[str] = Header(default=None, alias=CSRF_HEADER),
) -> None:
    if not validate_csrf_token(x_csrf_token):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
