"""
Identity Provider Client
========================
Redirect-based delegated authentication against Internet Identity.

The ceremony cannot finish inside one function call:

    1. ``begin_login()`` generates a session key, persists it together
       with a state nonce, and returns the provider authorize URL.
    2. The browser navigates away.  Everything in memory is lost.
    3. The provider redirects back to ``redirect_uri`` with either
       ``delegation`` + ``state`` (success) or ``error`` (failure) in the
       query string, and ``complete_login()`` is called on the fresh page
       load with those parameters.

The provider credential (session key seed + delegation chain) lives in the
injected session store under ``identity`` / ``delegation``.  This client
never touches the application-level SessionRecord; that belongs to
``SessionManager``.
"""

from __future__ import annotations

import base64
import logging
import secrets
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Mapping, Optional
from urllib.parse import urlencode

from ..run_config import OpenDRunConfig
from .errors import LoginFailed, ProviderUnavailable
from .identity import (
    AnyIdentity,
    DelegationChain,
    anonymous_identity,
    delegated_identity,
    generate_session_key,
    is_anonymous,
    session_key_from_hex,
    session_key_to_hex,
)
from .session_store import BaseSessionStore

logger = logging.getLogger(__name__)


IDENTITY_KEY = "identity"
DELEGATION_KEY = "delegation"
PENDING_KEY = "ii_pending_key"
STATE_KEY = "ii_login_state"

CALLBACK_PARAMS = ("delegation", "error")
# everything the provider appends to redirect_uri
CALLBACK_KEYS = ("delegation", "state", "error", "error_description")


def get_identity_provider_url(config: OpenDRunConfig) -> str:
    """Pick the provider for the environment the app is served from.

    Local development needs a locally deployed provider: the production
    one cannot vouch for identities on a local replica.
    """
    if config.is_local_app:
        return f"{config.local_identity_provider}/?canisterId={config.resolved_ii_canister_id}"
    return config.production_identity_provider


def is_callback(params: Mapping[str, str]) -> bool:
    """True if *params* look like a provider redirect back to the app."""
    return any(params.get(name) for name in CALLBACK_PARAMS)


def encode_delegation_param(chain: DelegationChain) -> str:
    return base64.urlsafe_b64encode(chain.to_json().encode("utf-8")).decode("ascii").rstrip("=")


def decode_delegation_param(value: str) -> DelegationChain:
    """Raises ``ValueError`` on anything that is not an encoded chain."""
    padded = value + "=" * (-len(value) % 4)
    try:
        text = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (ValueError, UnicodeError) as exc:
        raise ValueError(f"Delegation parameter is not base64 JSON: {exc}") from exc
    return DelegationChain.from_json(text)


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    try:
        yield
    except OSError as exc:
        raise ProviderUnavailable(f"Session storage failed while {action}: {exc}") from exc


class IdentityProviderClient:
    """Holds and validates the provider credential for this origin."""

    def __init__(
        self,
        store: BaseSessionStore,
        config: Optional[OpenDRunConfig] = None,
        *,
        clock_ns: Callable[[], int] = time.time_ns,
    ):
        self.store = store
        self.config = config or OpenDRunConfig()
        self._clock_ns = clock_ns

    @property
    def provider_url(self) -> str:
        return get_identity_provider_url(self.config)

    # ── Credential state ──────────────────────────────────────────

    def _load(self) -> Optional[AnyIdentity]:
        with _store_errors("reading the provider credential"):
            seed_hex = self.store.get(IDENTITY_KEY)
            chain_json = self.store.get(DELEGATION_KEY)
        if not seed_hex or not chain_json:
            return None

        try:
            session_key = session_key_from_hex(seed_hex)
            chain = DelegationChain.from_json(chain_json)
        except ValueError as exc:
            logger.warning(f"[AUTH] Stored provider credential is unreadable: {exc}")
            return None

        if chain.session_public_key != session_key.der_pubkey:
            logger.warning("[AUTH] Stored delegation does not belong to the stored session key")
            return None
        if not chain.is_valid(self._clock_ns()):
            logger.info("[AUTH] Provider delegation has expired")
            return None
        return delegated_identity(session_key, chain)

    def is_authenticated(self) -> bool:
        identity = self._load()
        return identity is not None and not is_anonymous(identity.sender())

    def get_identity(self) -> AnyIdentity:
        """The delegated identity, or the anonymous one if not logged in."""
        return self._load() or anonymous_identity()

    # ── Redirect ceremony ─────────────────────────────────────────

    def begin_login(self, redirect_uri: str) -> str:
        """Persist a fresh session key + nonce and return the authorize URL."""
        session_key = generate_session_key()
        state = secrets.token_urlsafe(16)
        with _store_errors("starting login"):
            self.store.set(PENDING_KEY, session_key_to_hex(session_key))
            self.store.set(STATE_KEY, state)

        params = urlencode({
            "sessionPublicKey": session_key.der_pubkey.hex(),
            "maxTimeToLive": str(self.config.max_time_to_live_ns),
            "redirect_uri": redirect_uri,
            "state": state,
        })
        base = self.provider_url
        separator = "&" if "?" in base else "?"
        logger.info(f"[AUTH] Redirecting to identity provider {base}")
        return f"{base}{separator}{params}"

    def complete_login(self, params: Mapping[str, str]) -> AnyIdentity:
        """Finish the ceremony from the provider's redirect parameters.

        The chain's signatures are checked by the replica on every signed
        call; here it must belong to the pending session key and be
        unexpired.

        Raises:
            LoginFailed:         provider error, nonce mismatch, or a
                                 delegation that is malformed, foreign
                                 or expired.
            ProviderUnavailable: session storage failed.
        """
        with _store_errors("completing login"):
            expected_state = self.store.get(STATE_KEY)
            pending_seed = self.store.get(PENDING_KEY)

        try:
            error = params.get("error")
            if error:
                description = params.get("error_description") or ""
                raise LoginFailed(f"Identity provider returned {error}: {description}".rstrip(": "))

            if not expected_state or params.get("state") != expected_state:
                raise LoginFailed("Login state does not match the pending request")
            if not pending_seed:
                raise LoginFailed("No pending session key for this login")

            encoded = params.get("delegation") or ""
            try:
                chain = decode_delegation_param(encoded)
                session_key = session_key_from_hex(pending_seed)
            except ValueError as exc:
                raise LoginFailed(f"Malformed delegation: {exc}") from exc

            if chain.session_public_key != session_key.der_pubkey:
                raise LoginFailed("Delegation was issued for a different session key")
            if not chain.is_valid(self._clock_ns()):
                raise LoginFailed("Delegation has already expired")
        finally:
            self._discard_pending()

        with _store_errors("saving the provider credential"):
            self.store.set(IDENTITY_KEY, session_key_to_hex(session_key))
            self.store.set(DELEGATION_KEY, chain.to_json())

        identity = delegated_identity(session_key, chain)
        logger.info(f"[AUTH] Login completed for {identity.sender().to_str()}")
        return identity

    def _discard_pending(self) -> None:
        with _store_errors("clearing login scratch state"):
            self.store.delete(PENDING_KEY)
            self.store.delete(STATE_KEY)

    # ── Logout ────────────────────────────────────────────────────

    def logout(self) -> None:
        """Drop the provider credential.  The SessionRecord is left alone."""
        with _store_errors("logging out"):
            self.store.delete(IDENTITY_KEY)
            self.store.delete(DELEGATION_KEY)
        logger.info("[AUTH] Provider credential removed")
