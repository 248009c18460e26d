"""Authentication dependencies for admin and store scoping."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from services.session_token import ROLE_ADMIN, ROLE_STORE, decode_session_token


auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    subject: str
    role: str
    store_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def ensure_store_scope(auth: AuthContext, store_id: str) -> str:
    """Return store_id when the caller may act on it; store tokens only see their own store."""
    if auth.role == ROLE_STORE and auth.store_id != store_id:
        raise HTTPException(status_code=403, detail="store_id does not match authenticated session.")
    return store_id


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    """Resolve authenticated caller from Bearer session token."""
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing Bearer session token.")

    try:
        payload = decode_session_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    return AuthContext(
        subject=str(payload.get("sub", "")),
        role=str(payload.get("role", "")),
        store_id=str(payload.get("store_id", "")) or None,
    )


async def require_admin(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
    if not auth.is_admin:
        raise HTTPException(status_code=403, detail="Admin session required.")
    return auth
