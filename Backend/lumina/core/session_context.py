"""
Session Context Resolution Module

Resolves who is calling, once per request, into an explicit SessionContext.
Screens and services read role and theme from this object instead of from
process-wide state.

AUTH METHOD:
    - Bearer JWT signed with the shared auth secret (HS256 by default)
    - `sub` is the auth identity, `email` decides the role
    - Emails ending in the staff domain are staff, everyone else is a customer
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .db import get_session

logger = logging.getLogger(__name__)


class Role(str, Enum):
    CUSTOMER = "customer"
    STAFF = "staff"


class ThemePreference(str, Enum):
    LIGHT = "light"
    DARK = "dark"


@dataclass(frozen=True)
class SessionContext:
    """Identity, role and display preference for the current caller."""

    user_id: str
    email: str
    role: Role
    theme: ThemePreference = ThemePreference.LIGHT

    def __post_init__(self):
        if not self.user_id:
            raise ValueError("user_id is required")
        if not self.email:
            raise ValueError("email is required")

    @property
    def is_staff(self) -> bool:
        return self.role == Role.STAFF


class AuthenticationError(Exception):
    """Raised when the bearer token is missing or invalid."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


def resolve_role(email: str, staff_domain: Optional[str] = None) -> Role:
    domain = (staff_domain or get_settings().staff_email_domain).lower()
    if email.strip().lower().endswith(domain):
        return Role.STAFF
    return Role.CUSTOMER


def decode_access_token(token: str) -> dict:
    """Verify a bearer token and return its claims."""
    settings = get_settings()
    try:
        return jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=settings.auth_jwt_audience,
        )
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Session expired. Please sign in again.") from e
    except jwt.InvalidTokenError as e:
        raise AuthenticationError(f"Invalid token: {e}") from e


def build_session_context(claims: dict, theme: Optional[str] = None) -> SessionContext:
    user_id = claims.get("sub")
    email = claims.get("email")
    if not user_id or not email:
        raise AuthenticationError("Token is missing sub or email claim")
    return SessionContext(
        user_id=user_id,
        email=email,
        role=resolve_role(email),
        theme=ThemePreference(theme) if theme else ThemePreference.LIGHT,
    )


async def get_session_context(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> SessionContext:
    """FastAPI dependency resolving the caller's SessionContext."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required. Please sign in.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        claims = decode_access_token(auth_header[7:])
        ctx = build_session_context(claims)
    except AuthenticationError as e:
        logger.warning(f"JWT verification failed: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )

    if ctx.role == Role.CUSTOMER:
        # Deferred import to avoid circular dependency
        from ..models import Customer

        result = await session.execute(
            select(Customer.theme_preference).where(Customer.user_id == ctx.user_id)
        )
        theme = result.scalar_one_or_none()
        if theme:
            ctx = SessionContext(ctx.user_id, ctx.email, ctx.role, ThemePreference(theme))
    return ctx


def require_staff(ctx: SessionContext = Depends(get_session_context)) -> SessionContext:
    if not ctx.is_staff:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Staff access only")
    return ctx
