"""
Shared fixtures: in-memory store, controllable clock, a fake agent and
helpers that play the identity provider's part of the redirect login.
"""

import time
from urllib.parse import parse_qs, urlparse

import pytest
from ic.candid import decode
from ic.constants import IC_DELEGATION_DOMIAN_SEPARATOR
from ic.identity import Identity
from ic.principal import Principal
from ic.utils import to_request_id

from opend.auth.client_factory import BoundClientFactory
from opend.auth.identity import Delegation, DelegationChain, SignedDelegation, session_key_from_hex
from opend.auth.identity_provider import (
    IdentityProviderClient,
    PENDING_KEY,
    encode_delegation_param,
)
from opend.auth.session_manager import LoginRedirect, SessionManager
from opend.auth.session_policy import SessionPolicy
from opend.auth.session_store import MemorySessionStore
from opend.run_config import OpenDRunConfig

HOUR_MS = 60 * 60 * 1000
DAY_NS = 24 * 60 * 60 * 1_000_000_000


class FakeClock:
    """Callable returning epoch seconds; tests move it explicitly."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: int) -> None:
        self.now += ms / 1000.0


def _plain(value):
    if isinstance(value, Principal):
        return value.to_str()
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


class FakeAgent:
    """Stands in for ``ReplicaAgent``; records trust bootstrap and calls.

    Calls are recorded as ``(kind, canister_id, method, args)`` with the
    Candid argument decoded back to plain values (principals as text).
    """

    instances = []

    def __init__(self, identity=None, host="", root_key=None, timeout=30):
        self.identity = identity
        self.host = host
        self.root_key = root_key
        self.timeout = timeout
        self.verify_query_signatures = True
        self.verify_update_signatures = True
        self.root_key_fetches = 0
        self.calls = []
        self.replies = {}
        self.fail_root_key = None
        FakeAgent.instances.append(self)

    def get_principal(self):
        return self.identity.sender()

    def fetch_root_key(self):
        self.root_key_fetches += 1
        if self.fail_root_key is not None:
            raise self.fail_root_key
        self.root_key = b"root"
        return self.root_key

    def _record(self, kind, canister_id, method, arg, return_type):
        args = [_plain(item["value"]) for item in decode(arg)]
        self.calls.append((kind, canister_id, method, args))
        if method not in self.replies:
            return []
        return [{"type": t.name, "value": self.replies[method]} for t in return_type]

    def query_raw(self, canister_id, method_name, arg, return_type=None, effective_canister_id=None):
        return self._record("query", canister_id, method_name, arg, return_type)

    def update_raw(self, canister_id, method_name, arg, return_type=None, effective_canister_id=None, **kwargs):
        return self._record("update", canister_id, method_name, arg, return_type)


def make_chain(provider_key, session_public_key, expiration_ns):
    """A one-link chain signed the way the identity provider signs it."""
    payload = to_request_id({"pubkey": session_public_key, "expiration": expiration_ns})
    _, signature = provider_key.sign(IC_DELEGATION_DOMIAN_SEPARATOR + payload)
    return DelegationChain(
        public_key=provider_key.der_pubkey,
        delegations=[SignedDelegation(Delegation(session_public_key, expiration_ns), signature)],
    )


@pytest.fixture(autouse=True)
def _reset_fake_agents():
    FakeAgent.instances = []
    yield
    FakeAgent.instances = []


@pytest.fixture
def store():
    return MemorySessionStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return OpenDRunConfig(
        host="http://127.0.0.1:8000",
        app_url="http://localhost:8501",
        opend_canister_id="rrkah-fqaaa-aaaaa-aaaaq-cai",
        token_canister_id="ryjl3-tyaaa-aaaaa-aaaba-cai",
    )


@pytest.fixture
def provider_key():
    """The key the identity provider vouches for (the user's account)."""
    return Identity()


@pytest.fixture
def session(config, store, clock):
    return SessionManager(
        config,
        store=store,
        policy=SessionPolicy(store, window_ms=config.session_window_ms, clock=clock),
        provider=IdentityProviderClient(store, config),
        client_factory=BoundClientFactory(config, agent_factory=FakeAgent),
    )


def callback_for(redirect: LoginRedirect, store, provider_key, expiration_ns=None):
    """Build the query parameters the provider would redirect back with."""
    query = parse_qs(urlparse(redirect.url).query)
    session_key = session_key_from_hex(store.get(PENDING_KEY))
    assert query["sessionPublicKey"][0] == session_key.der_pubkey.hex()
    if expiration_ns is None:
        expiration_ns = time.time_ns() + 7 * DAY_NS
    chain = make_chain(provider_key, session_key.der_pubkey, expiration_ns)
    return {
        "delegation": encode_delegation_param(chain),
        "state": query["state"][0],
    }


def log_in(session, provider_key):
    """Run the full two-phase login against *session*; returns the identity."""
    redirect = session.login()
    assert isinstance(redirect, LoginRedirect)
    identity = session.resume(callback_for(redirect, session.store, provider_key))
    assert identity is not None
    return identity
