"""
Session verification for the admin surface.
Verifies HS256 session JWTs issued by the dashboard; the webhook ingestion
route never consults this.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt as pyjwt

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

CAP_MANAGE_SECRETS = "webhook_secrets:manage"
CAP_WEBHOOKS_ADMIN = "webhooks:admin"


@dataclass(frozen=True)
class SessionUser:
    user_id: str
    email: Optional[str] = None
    role: str = "viewer"
    permissions: frozenset[str] = field(default_factory=frozenset)


class SessionAuthService:
    def __init__(self, jwt_secret: str, algorithm: str = "HS256"):
        self._jwt_secret = jwt_secret
        self._algorithm = algorithm

    def verify_session(self, token: str) -> Optional[SessionUser]:
        """Decode a bearer token. None when missing, expired, or forged."""
        if not token or not self._jwt_secret:
            return None
        try:
            payload = pyjwt.decode(token, self._jwt_secret, algorithms=[self._algorithm])
        except pyjwt.ExpiredSignatureError:
            logger.info("Rejected expired session token")
            return None
        except pyjwt.InvalidTokenError:
            logger.warning("Rejected invalid session token")
            return None

        user_id = payload.get("sub")
        if not user_id:
            return None
        permissions = payload.get("permissions") or []
        if not isinstance(permissions, list):
            permissions = []
        return SessionUser(
            user_id=str(user_id),
            email=payload.get("email"),
            role=str(payload.get("role") or "viewer"),
            permissions=frozenset(str(p) for p in permissions),
        )

    @staticmethod
    def has_permission(user: SessionUser, capability: str) -> bool:
        return user.role == ADMIN_ROLE or capability in user.permissions

    def issue_token(
        self,
        user_id: str,
        email: Optional[str] = None,
        role: str = "viewer",
        permissions: Optional[list[str]] = None,
        expires_in_hours: int = 24,
    ) -> str:
        """Mint a session token (operator scripts and tests)."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "email": email,
            "role": role,
            "permissions": permissions or [],
            "iat": now,
            "exp": now + timedelta(hours=expires_in_hours),
        }
        return pyjwt.encode(payload, self._jwt_secret, algorithm=self._algorithm)
