"""
Bound Client Factory
====================
Builds network clients bound to one validated identity.

Per invocation:
    1. One ``ReplicaAgent`` carrying the identity and the configured host
    2. Local replica → reply signature verification switched off, on
       agents that support it (there are no real consensus signatures
       to check)
    3. Development build or local replica → root key fetched before use
       (no embedded production root key is available)
    4. One actor per remote service, all sharing that agent

Nothing is cached: a new identity always means new clients.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from ..actors import Actor, create_opend_actor, create_token_actor
from ..agent import AgentError, ReplicaAgent
from ..run_config import OpenDRunConfig
from .errors import ClientBindingFailed, IdentityRequired
from .identity import AnyIdentity, anonymous_identity

logger = logging.getLogger(__name__)


_VERIFY_FLAGS = ("verify_query_signatures", "verify_update_signatures")


@dataclass
class BoundClients:
    """Clients from one factory call.  Never persisted."""

    agent: ReplicaAgent
    opend: Actor
    token: Actor

    @property
    def principal(self):
        return self.agent.get_principal()


class BoundClientFactory:
    """Creates agents and actors for a given identity."""

    def __init__(
        self,
        config: Optional[OpenDRunConfig] = None,
        *,
        agent_factory: Callable[..., ReplicaAgent] = ReplicaAgent,
    ):
        """
        Args:
            config:        Host, build mode and canister ids.
            agent_factory: Agent constructor, ``(identity=, host=, root_key=,
                           timeout=)``.  Swapped out in tests.
        """
        self.config = config or OpenDRunConfig()
        self._agent_factory = agent_factory

    def make_agent(self, identity: Optional[AnyIdentity]) -> ReplicaAgent:
        if identity is None:
            raise IdentityRequired("Identity is required to create authenticated clients")

        root_key = None
        if self.config.root_key_hex:
            try:
                root_key = bytes.fromhex(self.config.root_key_hex)
            except ValueError as exc:
                raise ClientBindingFailed(f"Configured root key is not hex: {exc}") from exc

        try:
            agent = self._agent_factory(
                identity=identity,
                host=self.config.host,
                root_key=root_key,
                timeout=self.config.request_timeout,
            )
        except Exception as exc:
            raise ClientBindingFailed(f"Could not construct agent for {self.config.host}: {exc}") from exc

        if self.config.trust_local_transport:
            for flag in _VERIFY_FLAGS:
                if hasattr(agent, flag):
                    setattr(agent, flag, False)
            logger.debug("[CLIENTS] Local replica — reply signature verification disabled")

        if self.config.needs_root_key_fetch:
            try:
                agent.fetch_root_key()
            except AgentError as exc:
                raise ClientBindingFailed(f"Root key bootstrap failed: {exc}") from exc

        return agent

    def make_bound_clients(self, identity: Optional[AnyIdentity]) -> BoundClients:
        """Build the opend + token actors on one shared agent.

        Raises:
            IdentityRequired:    *identity* is None.
            ClientBindingFailed: missing canister ids, agent construction
                                 or root-key bootstrap failure.
        """
        if identity is None:
            raise IdentityRequired("Identity is required to create authenticated clients")

        if not self.config.opend_canister_id:
            logger.error("[CLIENTS] opend canister id is not configured")
            raise ClientBindingFailed(
                "opend canister id is not defined. Set CANISTER_ID_OPEND or deploy locally."
            )
        if not self.config.token_canister_id:
            logger.error("[CLIENTS] token canister id is not configured")
            raise ClientBindingFailed(
                "token canister id is not defined. Set CANISTER_ID_TOKEN or deploy locally."
            )

        agent = self.make_agent(identity)
        clients = BoundClients(
            agent=agent,
            opend=create_opend_actor(self.config.opend_canister_id, agent),
            token=create_token_actor(self.config.token_canister_id, agent),
        )
        logger.info(f"[CLIENTS] Bound clients created for {clients.principal.to_str()}")
        return clients

    def make_anonymous_agent(self) -> ReplicaAgent:
        """Unsigned agent for public reads (listings shown before login)."""
        return self.make_agent(anonymous_identity())
