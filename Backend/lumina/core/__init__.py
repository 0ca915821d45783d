"""
Core module - configuration, database, caller identity and response envelopes.
"""
from .config import get_settings
from .db import get_session, Base, engine, AsyncSessionLocal
from .session_context import (
    SessionContext,
    Role,
    ThemePreference,
    AuthenticationError,
    get_session_context,
    require_staff,
)
from .responses import http_status_for, success_response, error_response, outcome_response

__all__ = [
    "get_settings",
    "get_session",
    "Base",
    "engine",
    "AsyncSessionLocal",
    "SessionContext",
    "Role",
    "ThemePreference",
    "AuthenticationError",
    "get_session_context",
    "require_staff",
    "http_status_for",
    "success_response",
    "error_response",
    "outcome_response",
]
