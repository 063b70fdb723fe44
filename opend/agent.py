"""
Replica Agent
=============
Signs calls with an identity and sends them to the replica, using the
``ic-py`` agent for the protocol (CBOR envelopes, request ids, delegation
chains, request-status polling).

This module adds the parts the session layer needs on top:

    - per-request HTTP timeouts and status-code checks on the transport
    - ``fetch_root_key()`` for development replicas
    - one error taxonomy: ``AgentError`` for transport and protocol
      failures, ``CallRejected`` when the canister refuses the call
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import cbor2
import httpx
import requests
from ic.agent import Agent
from ic.client import Client

from .auth.identity import AnyIdentity, anonymous_identity

logger = logging.getLogger(__name__)


_DEFAULT_TIMEOUT = 30
_CBOR_HEADERS = {"Content-Type": "application/cbor"}
_REJECTED_PREFIX = "Rejected: "


class AgentError(Exception):
    """Transport or protocol failure."""


class CallRejected(AgentError):
    """The remote service rejected the call."""

    def __init__(self, reject_message: str, reject_code: Optional[int] = None):
        if reject_code is None:
            super().__init__(f"Call rejected: {reject_message}")
        else:
            super().__init__(f"Call rejected ({reject_code}): {reject_message}")
        self.reject_code = reject_code
        self.reject_message = reject_message


class ReplicaClient(Client):
    """``ic.client.Client`` with timeouts and HTTP status checks."""

    def __init__(self, url: str, timeout: int = _DEFAULT_TIMEOUT):
        super().__init__(url=url)
        self.timeout = timeout

    def _post(self, canister_id: str, endpoint: str, data: bytes) -> bytes:
        url = f"{self.url}/api/v2/canister/{canister_id}/{endpoint}"
        response = httpx.post(url, content=data, headers=_CBOR_HEADERS, timeout=self.timeout)
        if response.status_code >= 400:
            raise AgentError(f"{endpoint} on {canister_id} returned HTTP {response.status_code}: "
                             f"{response.text[:200]}")
        return response.content

    def query(self, canister_id, data):
        return self._post(canister_id, "query", data)

    def call(self, canister_id, req_id, data):
        self._post(canister_id, "call", data)
        return req_id

    def read_state(self, canister_id, data):
        return self._post(canister_id, "read_state", data)


class ReplicaAgent(Agent):
    """One identity against one host.

    Attributes:
        host:     Replica base URL (no trailing slash).
        timeout:  Seconds per HTTP request, and the polling budget for
                  update calls.
        root_key: Trusted replica key (DER).  The mainnet key unless
                  configured or replaced by ``fetch_root_key()``.
    """

    def __init__(
        self,
        identity: Optional[AnyIdentity] = None,
        host: str = "http://127.0.0.1:8000",
        *,
        root_key: Optional[bytes] = None,
        timeout: int = _DEFAULT_TIMEOUT,
    ):
        self.host = host.rstrip("/")
        self.timeout = timeout
        super().__init__(identity or anonymous_identity(), ReplicaClient(self.host, timeout))
        if root_key is not None:
            self.root_key = root_key

    # ── Trust bootstrap ───────────────────────────────────────────

    def fetch_root_key(self) -> bytes:
        """Fetch and cache the replica root key.

        Only safe against a development replica: a production client
        must ship the key instead of trusting the network for it.
        """
        url = f"{self.host}/api/v2/status"
        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
            status = cbor2.loads(response.content)
        except requests.RequestException as exc:
            raise AgentError(f"Could not fetch root key from {url}: {exc}") from exc
        except ValueError as exc:
            raise AgentError(f"Status endpoint returned invalid CBOR: {exc}") from exc

        if isinstance(status, cbor2.CBORTag):
            status = status.value
        root_key = status.get("root_key") if isinstance(status, dict) else None
        if not isinstance(root_key, bytes) or not root_key:
            raise AgentError("Status response has no root_key")
        self.root_key = root_key
        logger.info(f"[AGENT] Root key fetched from {self.host}")
        return self.root_key

    # ── Calls ─────────────────────────────────────────────────────

    def query_raw(self, canister_id, method_name, arg, return_type=None, effective_canister_id=None):
        logger.debug(f"[AGENT] query {canister_id}.{method_name}")
        try:
            result = super().query_raw(canister_id, method_name, arg, return_type, effective_canister_id)
        except httpx.HTTPError as exc:
            raise AgentError(f"{method_name} on {canister_id} failed: {exc}") from exc
        except ValueError as exc:
            raise AgentError(f"{method_name} on {canister_id} returned a malformed reply: {exc}") from exc

        # ic-py hands back the reject message as a plain string
        if isinstance(result, str):
            raise CallRejected(result)
        if result is None:
            raise AgentError(f"{method_name} on {canister_id} returned no reply")
        return result

    def update_raw(self, canister_id, method_name, arg, return_type=None, effective_canister_id=None, **kwargs):
        logger.debug(f"[AGENT] update {canister_id}.{method_name}")
        kwargs.setdefault("timeout", self.timeout)
        try:
            return super().update_raw(canister_id, method_name, arg, return_type,
                                      effective_canister_id, **kwargs)
        except AgentError:
            raise
        except httpx.HTTPError as exc:
            raise AgentError(f"{method_name} on {canister_id} failed: {exc}") from exc
        except Exception as exc:
            # ic-py signals rejection and poll timeouts with bare Exceptions
            message = str(exc)
            if message.startswith(_REJECTED_PREFIX):
                raise CallRejected(message[len(_REJECTED_PREFIX):]) from exc
            raise AgentError(f"{method_name} on {canister_id} failed: {message}") from exc


def decoded_values(result: List[dict]) -> List[Any]:
    """Strip the ``{"type", "value"}`` wrappers from a decoded reply."""
    return [item["value"] for item in result]
