"""
Session Manager
===============
The only entry point the UI and CLI use for authentication.

Operations:
    - ``login()``              → identity now, or a ``LoginRedirect`` to follow
    - ``resume(params)``       → call on EVERY page load / process start
    - ``logout()``             → provider logout + SessionRecord cleanup
    - ``check_auth()``         → ``Identity`` or None; never raises
    - ``get_authed_clients()`` → clients bound to a freshly re-checked identity

Login is a two-phase protocol because the middle step is a full browser
navigation.  ``login()`` persists the ``ii_login_initiated`` marker and
hands back the provider URL; the caller navigates and forgets about it.
When the provider redirects back, the new page load calls ``resume()``
with the query parameters, which completes or discards the ceremony.

Session window (``check_auth``):
    1. Window lapsed → force provider logout, clear record, None
    2. Provider authenticated → refresh timestamp (sliding window), identity
    3. Otherwise → clear record, None

Concurrency: several page loads may run ``check_auth()`` at once.  Each
does its own read-decide-write on the shared store; last writer wins,
which at worst loses one timestamp refresh.

Usage::

    from opend.auth import SessionManager

    session = SessionManager(OpenDRunConfig.from_env())
    session.resume(query_params)
    identity = session.check_auth()
    if identity is None:
        result = session.login()
        if isinstance(result, LoginRedirect):
            navigate_to(result.url)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from ic.principal import Principal

from ..run_config import OpenDRunConfig
from .client_factory import BoundClientFactory, BoundClients
from .errors import LoginFailed, NotAuthenticated, SessionExpired
from .identity import AnyIdentity, is_anonymous
from .identity_provider import IdentityProviderClient, is_callback
from .session_policy import SessionPolicy
from .session_store import BaseSessionStore, JsonFileSessionStore

logger = logging.getLogger(__name__)


LOGIN_IN_PROGRESS_KEY = "ii_login_initiated"


@dataclass(frozen=True)
class LoginRedirect:
    """Returned by ``login()`` when the browser must leave the app.

    The result of the login is NOT delivered to the caller; it is observed
    by ``resume()`` / ``check_auth()`` after the provider redirects back.
    """

    url: str


def _flatten_params(params: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Accept ``parse_qs`` lists or plain query dicts; keep the last value."""
    flat: Dict[str, str] = {}
    for key, value in (params or {}).items():
        if isinstance(value, (list, tuple)):
            if not value:
                continue
            value = value[-1]
        if value is None:
            continue
        flat[str(key)] = str(value)
    return flat


class SessionManager:
    """Composes store, policy, provider and client factory."""

    def __init__(
        self,
        config: Optional[OpenDRunConfig] = None,
        *,
        store: Optional[BaseSessionStore] = None,
        provider: Optional[IdentityProviderClient] = None,
        policy: Optional[SessionPolicy] = None,
        client_factory: Optional[BoundClientFactory] = None,
    ):
        self.config = config or OpenDRunConfig()
        self.store = store if store is not None else JsonFileSessionStore(self.config.session_state_path)
        self.policy = policy or SessionPolicy(self.store, window_ms=self.config.session_window_ms)
        self.provider = provider or IdentityProviderClient(self.store, self.config)
        self.client_factory = client_factory or BoundClientFactory(self.config)

    # ── Login (two-phase) ─────────────────────────────────────────

    def login(self, redirect_uri: Optional[str] = None) -> Union[AnyIdentity, LoginRedirect]:
        """Start a login, or short-circuit if the provider already vouches.

        Do not wait on the result of a redirect: re-check with
        ``check_auth()`` after the provider sends the browser back.
        """
        if self.provider.is_authenticated():
            self.policy.touch()
            identity = self.provider.get_identity()
            logger.info(f"[SESSION] Already authenticated as {identity.sender().to_str()}")
            return identity

        self.store.set(LOGIN_IN_PROGRESS_KEY, "true")
        url = self.provider.begin_login(redirect_uri or self.config.app_url)
        return LoginRedirect(url)

    def login_in_progress(self) -> bool:
        return self.store.get(LOGIN_IN_PROGRESS_KEY) is not None

    def resume(self, callback_params: Optional[Mapping[str, Any]] = None) -> Optional[AnyIdentity]:
        """Finish or discard a pending redirect login.  Never raises.

        Returns the new identity on a successful callback, otherwise None.
        A marker with no callback parameters means the user is still at
        the provider; it is left in place.
        """
        params = _flatten_params(callback_params)
        try:
            if not is_callback(params):
                return None
            if not self.login_in_progress():
                logger.warning("[SESSION] Provider callback received with no login in progress — ignored")
                return None

            try:
                identity = self.provider.complete_login(params)
            except LoginFailed as exc:
                logger.warning(f"[SESSION] Login was not completed: {exc}")
                self._clear_login_flag()
                return None

            self.policy.touch()
            self._clear_login_flag()
            return identity
        except Exception:
            logger.exception("[SESSION] Error while resuming login")
            return None

    def _clear_login_flag(self) -> None:
        self.store.delete(LOGIN_IN_PROGRESS_KEY)

    # ── Logout ────────────────────────────────────────────────────

    def logout(self) -> None:
        """Provider logout, then local cleanup whatever the provider did."""
        try:
            self.provider.logout()
        finally:
            self.policy.clear()
            self._clear_login_flag()
            logger.info("[SESSION] Logged out")

    # ── Checks ────────────────────────────────────────────────────

    def _validate(self) -> AnyIdentity:
        """Apply the session window.  Raises instead of returning None."""
        if self.policy.is_expired():
            try:
                if self.provider.is_authenticated():
                    logger.info("[SESSION] Session window lapsed — forcing provider logout")
                    self.provider.logout()
            finally:
                self.policy.clear()
            raise SessionExpired("Session expired")

        if not self.provider.is_authenticated():
            self.policy.clear()
            raise NotAuthenticated("Identity provider reports no credential")

        identity = self.provider.get_identity()
        if is_anonymous(identity.sender()):
            # credential vanished between the two reads (another tab logged out)
            self.policy.clear()
            raise NotAuthenticated("Identity provider credential disappeared")

        self.policy.touch()
        return identity

    def check_auth(self) -> Optional[AnyIdentity]:
        """Current identity or None.  Never raises; failures are logged."""
        try:
            return self._validate()
        except (SessionExpired, NotAuthenticated) as exc:
            logger.debug(f"[SESSION] No identity: {exc}")
            return None
        except Exception:
            logger.exception("[SESSION] Error in check_auth")
            return None

    def check_session_timeout(self) -> bool:
        """Force logout if the window lapsed.  True if a logout happened."""
        if self.policy.is_expired() and self.provider.is_authenticated():
            try:
                self.provider.logout()
            finally:
                self.policy.clear()
            logger.info("[SESSION] Session expired — user logged out")
            return True
        return False

    def get_current_principal(self) -> Optional[Principal]:
        identity = self.check_auth()
        if identity is None:
            return None
        return identity.sender()

    def status(self) -> Dict[str, Any]:
        """Snapshot for display.  Runs a full ``check_auth()``."""
        identity = self.check_auth()
        return {
            "authenticated": identity is not None,
            "principal": identity.sender().to_str() if identity else None,
            "login_in_progress": self.login_in_progress(),
            "remaining_ms": self.policy.remaining_ms() if identity else 0,
        }

    # ── Clients ───────────────────────────────────────────────────

    def get_authed_clients(self) -> BoundClients:
        """Clients bound to an identity re-validated on this very call.

        Raises:
            NotAuthenticated:    no valid session.
            ClientBindingFailed: agent / trust bootstrap failure.
        """
        identity = self.check_auth()
        if identity is None:
            raise NotAuthenticated("User not authenticated. Please login first.")

        principal = identity.sender()
        if is_anonymous(principal):
            raise NotAuthenticated("Identity does not have a valid principal.")

        logger.info(f"[SESSION] Creating authenticated clients for principal: {principal.to_str()}")
        return self.client_factory.make_bound_clients(identity)
