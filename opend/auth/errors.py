"""
Authentication Errors
=====================
Failure conditions raised by the session layer.

``check_auth()`` and ``resume()`` swallow every one of these into a
``None`` result.  ``get_authed_clients()`` and the marketplace calls let
them propagate so the UI can show a retry / login prompt.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all session-layer failures."""


class NotAuthenticated(AuthError):
    """No valid identity when one was required."""


class IdentityRequired(AuthError):
    """The client factory was invoked without an identity."""


class SessionExpired(AuthError):
    """The application-level session window has lapsed.

    Internal signal: callers see ``NotAuthenticated`` after the forced
    cleanup has run.
    """


class ProviderUnavailable(AuthError):
    """Storage or network failure while talking to the identity provider."""


class ClientBindingFailed(AuthError):
    """Agent construction or trust-key bootstrap failed."""


class LoginFailed(AuthError):
    """The provider returned an error, or a delegation that does not verify."""
