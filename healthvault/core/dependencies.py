"""Shared FastAPI dependencies."""

from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from healthvault.core.exceptions import InvalidTokenError
from healthvault.core.rate_limiter import rate_limiter
from healthvault.core.security import TokenIssuer, get_token_issuer
from healthvault.db.session import get_db
from healthvault.models.user import User
from healthvault.services.auth_service import AuthService, get_auth_service
from healthvault.services.email_service import EmailService, get_email_service
from healthvault.services.user_service import UserService
from healthvault.utils.device import ClientContext, get_client_context

bearer_scheme = HTTPBearer(auto_error=False)

DbSession = Annotated[AsyncSession, Depends(get_db)]
Auth = Annotated[AuthService, Depends(get_auth_service)]
Mailer = Annotated[EmailService, Depends(get_email_service)]
Tokens = Annotated[TokenIssuer, Depends(get_token_issuer)]


def client_context(request: Request) -> ClientContext:
    """Client context for the request; also applies the per-IP auth rate limit."""
    client = get_client_context(request)
    rate_limiter.check("auth_ip", client.ip_address)
    return client


Client = Annotated[ClientContext, Depends(client_context)]


async def get_current_user(
    db: DbSession,
    tokens: Tokens,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> User:
    """Resolve the Bearer access token to an active user."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise InvalidTokenError("Authorization header missing")

    payload = tokens.verify_access_token(credentials.credentials)
    user = await UserService.get_by_id(db, payload["user_id"])
    if user is None or not user.is_active:
        raise InvalidTokenError("Invalid or expired token")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]
