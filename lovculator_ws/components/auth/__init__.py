"""
Authentication components.

Session cookie authentication strategy.
"""

from lovculator_ws.components.auth.strategies import (
    AuthStrategy,
    AuthResult,
    SessionCookieAuthStrategy,
    NullAuthStrategy,
    create_default_auth_strategy,
)

__all__ = [
    "AuthStrategy",
    "AuthResult",
    "SessionCookieAuthStrategy",
    "NullAuthStrategy",
    "create_default_auth_strategy",
]
