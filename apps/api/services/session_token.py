"""Session token helpers for admin and merchant dashboard scope."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings


SESSION_TOKEN_TYPE = "card_ledger_session"
ROLE_ADMIN = "admin"
ROLE_STORE = "store"
ROLES = (ROLE_ADMIN, ROLE_STORE)


def create_session_token(
    subject: str,
    role: str = ROLE_ADMIN,
    store_id: Optional[str] = None,
    expires_hours: Optional[int] = None,
) -> Dict[str, Any]:
    """Create a signed session token payload for API authentication."""
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    if role == ROLE_STORE and not store_id:
        raise ValueError("Store session tokens require a store_id.")

    now = datetime.now(timezone.utc)
    ttl_hours = int(expires_hours or settings.JWT_EXPIRATION_HOURS or 24)
    expires_at = now + timedelta(hours=max(ttl_hours, 1))
    claims: Dict[str, Any] = {
        "sub": subject,
        "type": SESSION_TOKEN_TYPE,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    if store_id:
        claims["store_id"] = store_id

    token = jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return {
        "token": token,
        "expires_at": int(expires_at.timestamp()),
    }


def decode_session_token(token: str) -> Dict[str, Any]:
    """Decode and validate a signed session token."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid or expired session token.") from exc

    token_type = str(payload.get("type", "")).strip()
    if token_type != SESSION_TOKEN_TYPE:
        raise ValueError("Invalid session token type.")

    subject = str(payload.get("sub", "")).strip()
    if not subject:
        raise ValueError("Session token missing subject.")

    role = str(payload.get("role", "")).strip()
    if role not in ROLES:
        raise ValueError("Session token has an unknown role.")
    if role == ROLE_STORE and not str(payload.get("store_id", "")).strip():
        raise ValueError("Store session token missing store_id.")

    return payload
