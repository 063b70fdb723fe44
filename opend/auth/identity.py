"""
Identity Helpers
================
Thin layer over ``ic-py`` identities and principals.

The agent library owns the key material and the request signing
(``ic.identity.Identity``, ``ic.identity.DelegateIdentity``).  This module
adds what the session layer needs around it:

    - principal text parsing that raises ``ValueError`` on bad input
    - session keys persisted as a hex seed
    - the provider's delegation chain in its JSON wire form
      (hex-encoded keys and signatures, expiration as a hex string of
      nanoseconds), with the expiry check done before every use

Delegation signatures are not re-checked here; the replica verifies the
chain on every signed request.
"""

from __future__ import annotations

import binascii
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from ic.identity import DelegateIdentity, Identity
from ic.principal import Principal

logger = logging.getLogger(__name__)


ANONYMOUS_PRINCIPAL_TEXT = "2vxsx-fae"
_SEED_LENGTH = 32

# Anything that can sign an ic-py request
AnyIdentity = Union[Identity, DelegateIdentity]


# ── Principals ────────────────────────────────────────────────────

def parse_principal(text: str) -> Principal:
    """Parse ``abcde-fghij-...``.  Raises ``ValueError`` on bad input."""
    if not isinstance(text, str) or not text.strip():
        raise ValueError("Principal text is empty")
    normalized = text.strip().lower()
    try:
        return Principal.from_str(normalized)
    except (binascii.Error, TypeError, ValueError) as exc:
        # from_str signals a checksum mismatch with a TypeError
        raise ValueError(f"Invalid principal text: {text!r}") from exc


def is_anonymous(principal: Optional[Principal]) -> bool:
    return principal is None or principal.to_str() == ANONYMOUS_PRINCIPAL_TEXT


def same_principal(a: Optional[Principal], b: Optional[Principal]) -> bool:
    if a is None or b is None:
        return a is b
    return a.bytes == b.bytes


def anonymous_identity() -> Identity:
    return Identity(anonymous=True)


# ── Session keys ──────────────────────────────────────────────────

def generate_session_key() -> Identity:
    return Identity()


def session_key_from_hex(seed_hex: str) -> Identity:
    """Restore an Ed25519 session key.  Raises ``ValueError`` on bad input."""
    try:
        seed = bytes.fromhex(seed_hex)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Session key is not hex: {exc}") from exc
    if len(seed) != _SEED_LENGTH:
        raise ValueError(f"Session key must be {_SEED_LENGTH} bytes, got {len(seed)}")
    return Identity(privkey=seed.hex())


def session_key_to_hex(key: Identity) -> str:
    return key.privkey


# ── Delegation chain ──────────────────────────────────────────────

@dataclass
class Delegation:
    pubkey: bytes
    expiration_ns: int
    targets: Optional[List[str]] = None


@dataclass
class SignedDelegation:
    delegation: Delegation
    signature: bytes


@dataclass
class DelegationChain:
    """Delegations from the provider's root key down to the session key."""

    public_key: bytes
    delegations: List[SignedDelegation] = field(default_factory=list)

    @property
    def session_public_key(self) -> Optional[bytes]:
        if not self.delegations:
            return None
        return self.delegations[-1].delegation.pubkey

    @property
    def expiration_ns(self) -> Optional[int]:
        if not self.delegations:
            return None
        return min(d.delegation.expiration_ns for d in self.delegations)

    def is_valid(self, now_ns: Optional[int] = None) -> bool:
        """Every link unexpired at *now_ns*."""
        expiration = self.expiration_ns
        if expiration is None:
            return False
        if now_ns is None:
            now_ns = time.time_ns()
        return expiration > now_ns

    def sender(self) -> Principal:
        """The account the provider vouches for."""
        return Principal.self_authenticating(self.public_key)

    # ── Serialization ─────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        delegations = []
        for signed in self.delegations:
            body: Dict[str, Any] = {
                "expiration": format(signed.delegation.expiration_ns, "x"),
                "pubkey": signed.delegation.pubkey.hex(),
            }
            if signed.delegation.targets is not None:
                body["targets"] = list(signed.delegation.targets)
            delegations.append({"delegation": body, "signature": signed.signature.hex()})
        return {"delegations": delegations, "publicKey": self.public_key.hex()}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DelegationChain":
        try:
            public_key = bytes.fromhex(data["publicKey"])
            delegations = []
            for item in data["delegations"]:
                body = item["delegation"]
                targets = body.get("targets")
                delegations.append(SignedDelegation(
                    delegation=Delegation(
                        pubkey=bytes.fromhex(body["pubkey"]),
                        expiration_ns=int(body["expiration"], 16),
                        targets=list(targets) if targets is not None else None,
                    ),
                    signature=bytes.fromhex(item["signature"]),
                ))
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"Malformed delegation chain: {exc}") from exc
        return cls(public_key=public_key, delegations=delegations)

    @classmethod
    def from_json(cls, text: str) -> "DelegationChain":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Delegation chain is not JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError("Delegation chain must be a JSON object")
        return cls.from_dict(data)


def delegated_identity(session_key: Identity, chain: DelegationChain) -> DelegateIdentity:
    """The identity requests are signed with after a provider login.

    Its principal is the chain's root key (the user's account); the
    session key signs and the chain travels with every request.
    """
    return DelegateIdentity(session_key, chain.to_dict())
