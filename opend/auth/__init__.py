"""
Authentication Module
=====================
Client-side identity and session layer for the OpenD marketplace.

Architecture:
    - ``SessionManager``          — the facade; the only thing the UI/CLI calls
    - ``SessionPolicy``           — rolling 24h application session window
    - ``IdentityProviderClient``  — redirect login with Internet Identity
    - ``BoundClientFactory``      — agents + actors bound to one identity
    - ``BaseSessionStore``        — injected key/value persistence

The browser-driven CLI login lives in ``session_bootstrap`` and is not
imported here so that the package does not require a browser runtime.

Usage::

    from opend.auth import SessionManager, LoginRedirect

    session = SessionManager(config)
    session.resume(query_params)          # every page load
    identity = session.check_auth()
    clients = session.get_authed_clients()
"""

from .errors import (
    AuthError,
    ClientBindingFailed,
    IdentityRequired,
    LoginFailed,
    NotAuthenticated,
    ProviderUnavailable,
    SessionExpired,
)
from .session_store import BaseSessionStore, JsonFileSessionStore, MemorySessionStore
from .session_policy import SessionPolicy
from .identity import (
    AnyIdentity,
    DelegationChain,
    Principal,
    is_anonymous,
    parse_principal,
)
from .identity_provider import IdentityProviderClient, get_identity_provider_url
from .client_factory import BoundClientFactory, BoundClients
from .session_manager import LoginRedirect, SessionManager

__all__ = [
    # Errors
    "AuthError",
    "ClientBindingFailed",
    "IdentityRequired",
    "LoginFailed",
    "NotAuthenticated",
    "ProviderUnavailable",
    "SessionExpired",
    # Storage + policy
    "BaseSessionStore",
    "JsonFileSessionStore",
    "MemorySessionStore",
    "SessionPolicy",
    # Identity
    "AnyIdentity",
    "DelegationChain",
    "Principal",
    "is_anonymous",
    "parse_principal",
    # Provider + clients
    "IdentityProviderClient",
    "get_identity_provider_url",
    "BoundClientFactory",
    "BoundClients",
    # Facade
    "LoginRedirect",
    "SessionManager",
]
