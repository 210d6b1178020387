"""
Session tokens and route authorization for the FastAPI API.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import structlog
from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt

from api.config import config
from api.database import APIDatabaseService
from api.dependencies import get_db_service, get_session_issuer
from api.models import UserRole

logger = structlog.get_logger(__name__)

DEFAULT_EXPIRE_DAYS = 365


class SessionIssuer:
    """Signs and verifies stateless session tokens."""

    def __init__(
        self,
        secret_key: Optional[str],
        algorithm: str = "HS256",
        expire_days: int = DEFAULT_EXPIRE_DAYS
    ):
        if not secret_key:
            raise ValueError("A signing secret is required to issue session tokens")
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_days = expire_days

    def issue(self, claims: Dict[str, Any]) -> str:
        """
        Sign an identity claim into a session token.

        Args:
            claims: Identity claim; must contain ``email``

        Returns:
            Encoded token
        """
        expires_at = datetime.now(timezone.utc) + timedelta(days=self.expire_days)
        payload = {**claims, "exp": expires_at}
        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        logger.info("Session token issued", email=claims.get("email"), expires_at=expires_at.isoformat())
        return token

    def validate(self, token: Optional[str]) -> Optional[Dict[str, Any]]:
        """
        Verify a session token.

        Args:
            token: Encoded token, possibly missing

        Returns:
            The identity claim if the token is well formed, correctly signed,
            unexpired and names an email; None otherwise
        """
        if not token:
            return None

        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            logger.warning("Rejected session token", error=str(e))
            return None

        if not claims.get("email"):
            logger.warning("Session token without email claim")
            return None
        return claims


async def require_authenticated(
    request: Request,
    issuer: SessionIssuer = Depends(get_session_issuer)
) -> Dict[str, Any]:
    """
    Resolve the caller's identity from the session cookie.

    Raises:
        HTTPException: 401 if the cookie is missing or the token is invalid
    """
    claims = issuer.validate(request.cookies.get(config.cookie_name))
    if claims is None:
        logger.warning("Unauthorized request", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="unauthorized access"
        )
    return claims


async def require_admin(
    request: Request,
    claims: Dict[str, Any] = Depends(require_authenticated),
    db: APIDatabaseService = Depends(get_db_service)
) -> Dict[str, Any]:
    """
    Allow only callers whose stored user record has the admin role.

    Raises:
        HTTPException: 403 if the user is unknown or not an admin
    """
    email = claims["email"]
    user = await db.users.get_user(email)
    if user is None or user.role != UserRole.ADMIN.value:
        logger.warning("Forbidden request", path=request.url.path, email=email)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="forbidden access"
        )
    return claims
