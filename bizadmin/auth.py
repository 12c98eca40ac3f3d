"""Bearer-token principal resolution.

Token issuance belongs to the identity service; this module verifies the
HS256 JWTs it hands out (``sub`` = user id, ``role``) and guards routes by
role.
"""

from dataclasses import dataclass
from datetime import timedelta

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .models import utcnow
from .utils.logging import get_logger

logger = get_logger(__name__)

ALGORITHM = "HS256"
ACCESS_TOKEN_TTL = timedelta(minutes=15)

ADMIN = "ADMIN"
SUPER_ADMIN = "SUPER_ADMIN"

bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str


def issue_token(user_id: str, role: str, secret: str, expires_in: timedelta = ACCESS_TOKEN_TTL) -> str:
    now = utcnow()
    claims = {"sub": user_id, "role": role, "iat": now, "exp": now + expires_in}
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def verify_token(token: str, secret: str) -> Principal | None:
    try:
        claims = jwt.decode(token, secret, algorithms=[ALGORITHM], options={"require": ["sub", "exp"]})
    except jwt.InvalidTokenError as e:
        logger.debug("Rejected bearer token", error=str(e))
        return None
    role = claims.get("role")
    if not role:
        return None
    return Principal(user_id=claims["sub"], role=role)


def get_current_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> Principal:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    principal = verify_token(credentials.credentials, request.app.state.settings.auth_secret)
    if principal is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return principal


def require_roles(*roles: str):
    """Dependency that admits only principals holding one of ``roles``."""

    def check(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return principal

    return check
