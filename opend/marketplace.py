"""
Marketplace Operations
======================
What the UI and CLI actually do with the session layer: list NFTs, mint,
and drive the token wallet.

Reads degrade to empty results (the page must still render); mutations
propagate errors so the caller can show a retry / login prompt.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional

from ic.principal import Principal

from .actors import create_opend_actor
from .auth.errors import NotAuthenticated
from .auth.identity import is_anonymous, parse_principal
from .auth.session_manager import SessionManager

logger = logging.getLogger(__name__)

# backend state needs a moment to settle after a mint before re-reading
REFRESH_DELAY_SECONDS = 2.0


@dataclass
class Galleries:
    owned: List[str] = field(default_factory=list)
    listed: List[str] = field(default_factory=list)
    error: Optional[str] = None


def _ids(values: Any) -> List[str]:
    return [_id(v) for v in (values or [])]


def _id(value: Any) -> str:
    return value.to_str() if isinstance(value, Principal) else str(value)


def load_galleries(session: SessionManager, principal: Optional[Principal] = None) -> Galleries:
    """Owned + listed NFT ids for the current viewer.

    Without a (non-anonymous) principal only the public listings are read,
    through an unsigned agent.
    """
    if is_anonymous(principal):
        try:
            agent = session.client_factory.make_anonymous_agent()
            opend = create_opend_actor(session.config.opend_canister_id, agent)
            listed = _ids(opend.getListedNFTs())
            logger.info(f"[MARKET] Listed NFTs: {len(listed)}")
            return Galleries(listed=listed)
        except Exception as e:
            logger.error(f"[MARKET] Error fetching listed NFTs: {e}")
            return Galleries(error=str(e))

    try:
        clients = session.get_authed_clients()
        owned = _ids(clients.opend.getOwnedNFTs(principal))
        listed = _ids(clients.opend.getListedNFTs())
        logger.info(f"[MARKET] Owned NFTs: {len(owned)}, listed NFTs: {len(listed)}")
        return Galleries(owned=owned, listed=listed)
    except Exception as e:
        logger.error(f"[MARKET] Error fetching NFTs: {e}")
        return Galleries(error=str(e))


def mint_nft(session: SessionManager, image_bytes: bytes, name: str) -> str:
    """Mint *image_bytes* under *name*.  The backend assigns the caller as owner."""
    if not name or not name.strip():
        raise ValueError("A collection name is required")
    if not image_bytes:
        raise ValueError("An image is required")

    clients = session.get_authed_clients()
    new_id = _id(clients.opend.mint(image_bytes, name.strip()))
    logger.info(f"[MARKET] Minted NFT {new_id} for {clients.principal.to_str()}")
    return new_id


def refresh_after_mint(session: SessionManager, principal: Principal, delay: float = REFRESH_DELAY_SECONDS) -> Galleries:
    time.sleep(delay)
    return load_galleries(session, principal)


# ---------------------------------------------------------------------------
# Token wallet
# ---------------------------------------------------------------------------

def wallet_balance(session: SessionManager, owner: Optional[str] = None) -> dict:
    """Balance + symbol for *owner* (defaults to the logged-in principal)."""
    clients = session.get_authed_clients()
    principal = parse_principal(owner) if owner else clients.principal
    balance = clients.token.balanceOf(principal)
    symbol = clients.token.getSymbol()
    return {"principal": principal.to_str(), "balance": balance, "symbol": symbol}


def wallet_payout(session: SessionManager) -> str:
    clients = session.get_authed_clients()
    result = str(clients.token.payOut())
    logger.info(f"[WALLET] Faucet payout: {result}")
    return result


def wallet_transfer(session: SessionManager, recipient: str, amount: int) -> str:
    if amount <= 0:
        raise ValueError("Transfer amount must be positive")
    to = parse_principal(recipient)
    clients = session.get_authed_clients()
    result = str(clients.token.transfer(to, int(amount)))
    logger.info(f"[WALLET] Transfer of {amount} to {to.to_str()}: {result}")
    return result


def require_principal(session: SessionManager) -> Principal:
    principal = session.get_current_principal()
    if is_anonymous(principal):
        raise NotAuthenticated("Please login first.")
    return principal
