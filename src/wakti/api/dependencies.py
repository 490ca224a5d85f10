"""Shared FastAPI dependencies."""

from fastapi import Depends, Header, HTTPException, Request, status

from wakti.containers import AppContainer
from wakti.domain.access import AuthSession


def get_container(request: Request) -> AppContainer:
    return request.app.state.container


def bearer_token(authorization: str | None = Header(default=None)) -> str | None:
    """Extract the token from an ``Authorization: Bearer`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def require_session(
    token: str | None = Depends(bearer_token),
    container: AppContainer = Depends(get_container),
) -> AuthSession:
    """Ensure the request carries a valid session."""
    if token is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    session = await container.access_service.auth_client.get_session(token)
    if session is None or not session.is_active or not session.user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    return session
