"""
Tests for identity.py: principal parsing, session keys, delegation chains.
"""

import time

import pytest
from ic.identity import DelegateIdentity, Identity
from ic.principal import Principal

from opend.auth.identity import (
    ANONYMOUS_PRINCIPAL_TEXT,
    DelegationChain,
    anonymous_identity,
    delegated_identity,
    generate_session_key,
    is_anonymous,
    parse_principal,
    same_principal,
    session_key_from_hex,
    session_key_to_hex,
)

from conftest import DAY_NS, make_chain


class TestPrincipal:

    def test_anonymous(self):
        assert Principal.anonymous().to_str() == ANONYMOUS_PRINCIPAL_TEXT
        assert is_anonymous(Principal.anonymous())
        assert is_anonymous(None)
        assert is_anonymous(anonymous_identity().sender())

    def test_parse_round_trip(self):
        principal = Identity().sender()
        assert same_principal(parse_principal(principal.to_str()), principal)
        assert not is_anonymous(principal)

    def test_parse_accepts_upper_case_and_whitespace(self):
        assert parse_principal("  2VXSX-FAE ").to_str() == ANONYMOUS_PRINCIPAL_TEXT

    @pytest.mark.parametrize("text", ["", "   ", "not-a-principal!", "2vxsx-fa", "aaaaa-ab", None])
    def test_parse_rejects_garbage(self, text):
        with pytest.raises(ValueError):
            parse_principal(text)

    def test_same_principal(self):
        a = parse_principal("rrkah-fqaaa-aaaaa-aaaaq-cai")
        assert same_principal(a, parse_principal("rrkah-fqaaa-aaaaa-aaaaq-cai"))
        assert not same_principal(a, Principal.anonymous())
        assert not same_principal(a, None)
        assert same_principal(None, None)


class TestSessionKeys:

    def test_hex_round_trip(self):
        key = generate_session_key()
        restored = session_key_from_hex(session_key_to_hex(key))
        assert restored.der_pubkey == key.der_pubkey
        assert same_principal(restored.sender(), key.sender())

    def test_fresh_keys_differ(self):
        assert generate_session_key().der_pubkey != generate_session_key().der_pubkey

    @pytest.mark.parametrize("seed", ["", "zz" * 32, "00" * 31, "00" * 33])
    def test_bad_seed(self, seed):
        with pytest.raises(ValueError):
            session_key_from_hex(seed)


class TestDelegationChain:

    def _chain(self, expiration_ns=None):
        provider = Identity()
        session_key = generate_session_key()
        if expiration_ns is None:
            expiration_ns = time.time_ns() + DAY_NS
        return provider, session_key, make_chain(provider, session_key.der_pubkey, expiration_ns)

    def test_chain_points_at_the_session_key(self):
        provider, session_key, chain = self._chain()
        assert chain.session_public_key == session_key.der_pubkey
        assert chain.public_key == provider.der_pubkey
        assert chain.is_valid()

    def test_expired_chain_is_not_valid(self):
        _, _, chain = self._chain(expiration_ns=time.time_ns() - 1)
        assert not chain.is_valid()

    def test_expiry_is_checked_against_the_given_clock(self):
        _, _, chain = self._chain(expiration_ns=1_000)
        assert chain.is_valid(999)
        assert not chain.is_valid(1_000)

    def test_wire_form_uses_hex_expiration(self):
        _, _, chain = self._chain(expiration_ns=255)
        body = chain.to_dict()["delegations"][0]["delegation"]
        assert body["expiration"] == "ff"
        assert "targets" not in body

    def test_json_round_trip(self):
        _, _, chain = self._chain()
        assert DelegationChain.from_json(chain.to_json()).to_dict() == chain.to_dict()

    def test_targets_survive_round_trip(self):
        _, _, chain = self._chain()
        chain.delegations[0].delegation.targets = ["rrkah-fqaaa-aaaaa-aaaaq-cai"]
        restored = DelegationChain.from_json(chain.to_json())
        assert restored.delegations[0].delegation.targets == ["rrkah-fqaaa-aaaaa-aaaaq-cai"]

    @pytest.mark.parametrize("text", [
        "nope",
        "[]",
        '{"publicKey": "00"}',
        '{"publicKey": "zz", "delegations": []}',
        '{"publicKey": "00", "delegations": [{"delegation": {"pubkey": "00", "expiration": "xyz"}, "signature": "00"}]}',
    ])
    def test_malformed_json_raises_value_error(self, text):
        with pytest.raises(ValueError):
            DelegationChain.from_json(text)

    def test_empty_chain_is_never_valid(self):
        chain = DelegationChain(public_key=b"")
        assert not chain.is_valid()
        assert chain.session_public_key is None

    def test_delegated_identity_acts_as_the_provider_account(self):
        provider, session_key, chain = self._chain()
        identity = delegated_identity(session_key, chain)

        assert isinstance(identity, DelegateIdentity)
        assert same_principal(identity.sender(), provider.sender())
        assert same_principal(identity.sender(), chain.sender())
        assert not same_principal(identity.sender(), session_key.sender())
        assert identity.der_pubkey == provider.der_pubkey
        assert identity.sign(b"m")[0] == session_key.der_pubkey
        assert identity.delegations[0]["delegation"]["pubkey"] == session_key.der_pubkey
