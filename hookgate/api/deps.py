"""
Shared FastAPI dependencies - service container access and admin auth.
"""
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from hookgate.services.container import ServiceContainer
from hookgate.services.session_auth import SessionUser

bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def require_capability(capability: str):
    """Dependency factory: a verified session holding `capability`."""

    async def _dependency(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
        services: ServiceContainer = Depends(get_services),
    ) -> SessionUser:
        if credentials is None:
            raise HTTPException(status_code=401, detail="Authentication required")
        user = services.session_auth.verify_session(credentials.credentials)
        if user is None:
            raise HTTPException(status_code=401, detail="Invalid or expired session")
        if not services.session_auth.has_permission(user, capability):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return _dependency
