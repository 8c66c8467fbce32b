"""FastAPI dependencies for authentication."""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from membermail.auth.jwt import SESSION_COOKIE_NAME, get_user_id_from_token
from membermail.models.user import User
from membermail.services import Services, get_services

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    services: Services = Depends(get_services),
) -> Optional[User]:
    """Resolve the signed-in user from a bearer token or the session cookie.

    Returns:
        User object, or None for anonymous requests and invalid tokens
    """
    token = credentials.credentials if credentials else request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        return None
    user_id = get_user_id_from_token(token)
    if not user_id:
        return None
    return services.directory.get_user(user_id)


def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    """Require an authenticated user.

    Raises:
        HTTPException: If no valid token is present or the user is gone
    """
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
