from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import jwt
from typing import Optional
from .core_settings import get_settings

settings = get_settings()

@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: Optional[str] = None
    is_admin: bool = False

def create_access_token(subject: str, expires_minutes: int = 60, **claims) -> str:
    now = datetime.now(timezone.utc)
    payload = {"sub": subject, "iat": now, "exp": now + timedelta(minutes=expires_minutes), **claims}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

def decode_access_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.PyJWTError:
        return None

def user_from_claims(claims: dict) -> Optional[CurrentUser]:
    subject = claims.get("sub")
    if not subject:
        return None
    email = claims.get("email")
    is_admin = claims.get("role") == "admin" or (email is not None and email in settings.ADMIN_EMAILS)
    return CurrentUser(id=str(subject), email=email, is_admin=is_admin)
