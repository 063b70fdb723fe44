"""
Remote Service Actors
=====================
Thin proxies that turn Python method calls into Candid-encoded agent calls.

Each interface maps a remote method name to its call kind (``query`` for
reads, ``update`` for state changes) and its Candid argument and return
types.  Arguments are converted on the way out (``Principal`` → text,
``bytes`` → list of ints); a single return value is unwrapped.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from ic.candid import Types, encode
from ic.principal import Principal

from .agent import ReplicaAgent, decoded_values

logger = logging.getLogger(__name__)


QUERY = "query"
UPDATE = "update"


class RemoteMethod(NamedTuple):
    kind: str
    args: List[Any]
    returns: List[Any]


_NFT_ID = Types.Principal

OPEND_INTERFACE: Dict[str, RemoteMethod] = {
    "completePurchase": RemoteMethod(UPDATE, [_NFT_ID, Types.Principal, Types.Principal], [Types.Text]),
    "getCyclesBalance": RemoteMethod(QUERY, [], [Types.Nat]),
    "getListedNFTPrice": RemoteMethod(QUERY, [_NFT_ID], [Types.Nat]),
    "getListedNFTs": RemoteMethod(QUERY, [], [Types.Vec(_NFT_ID)]),
    "getOpenDCanisterID": RemoteMethod(QUERY, [], [Types.Principal]),
    "getOriginalOwner": RemoteMethod(QUERY, [_NFT_ID], [Types.Principal]),
    "getOwnedNFTs": RemoteMethod(QUERY, [Types.Principal], [Types.Vec(_NFT_ID)]),
    "isListed": RemoteMethod(QUERY, [_NFT_ID], [Types.Bool]),
    "listItem": RemoteMethod(UPDATE, [_NFT_ID, Types.Nat], [Types.Text]),
    "mint": RemoteMethod(UPDATE, [Types.Vec(Types.Nat8), Types.Text], [_NFT_ID]),
}

TOKEN_INTERFACE: Dict[str, RemoteMethod] = {
    "balanceOf": RemoteMethod(QUERY, [Types.Principal], [Types.Nat]),
    "getSymbol": RemoteMethod(QUERY, [], [Types.Text]),
    "payOut": RemoteMethod(UPDATE, [], [Types.Text]),
    "transfer": RemoteMethod(UPDATE, [Types.Principal, Types.Nat], [Types.Text]),
}


def _to_wire(value: Any) -> Any:
    # candid encodes principals from text or raw bytes only
    if isinstance(value, Principal):
        return value.to_str()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return list(bytes(value))
    return value


def encode_args(method: RemoteMethod, args: tuple) -> bytes:
    if len(args) != len(method.args):
        raise TypeError(f"expected {len(method.args)} argument(s), got {len(args)}")
    return encode([{"type": t, "value": _to_wire(v)} for t, v in zip(method.args, args)])


class Actor:
    """Proxy for one remote service bound to one agent."""

    def __init__(self, canister_id: str, agent: ReplicaAgent, interface: Dict[str, RemoteMethod]):
        self.canister_id = canister_id
        self.agent = agent
        self._interface = dict(interface)

    @property
    def methods(self) -> List[str]:
        return sorted(self._interface)

    def __getattr__(self, name: str) -> Callable[..., Any]:
        interface = self.__dict__.get("_interface", {})
        if name not in interface:
            raise AttributeError(f"{type(self).__name__} has no remote method {name!r}")
        method = interface[name]

        def _call(*args: Any) -> Optional[Any]:
            arg = encode_args(method, args)
            if method.kind == QUERY:
                result = self.agent.query_raw(self.canister_id, name, arg, method.returns)
            else:
                result = self.agent.update_raw(self.canister_id, name, arg, method.returns)
            values = decoded_values(result)
            if len(method.returns) == 1:
                return values[0] if values else None
            return values

        _call.__name__ = name
        return _call

    def __repr__(self) -> str:
        return f"Actor({self.canister_id!r}, principal={self.agent.get_principal().to_str()})"


def create_actor(canister_id: str, agent: ReplicaAgent, interface: Dict[str, RemoteMethod]) -> Actor:
    if not canister_id:
        raise ValueError("canister_id is required to create an actor")
    return Actor(canister_id, agent, interface)


def create_opend_actor(canister_id: str, agent: ReplicaAgent) -> Actor:
    return create_actor(canister_id, agent, OPEND_INTERFACE)


def create_token_actor(canister_id: str, agent: ReplicaAgent) -> Actor:
    return create_actor(canister_id, agent, TOKEN_INTERFACE)
