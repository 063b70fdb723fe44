"""
Token Wallet - Streamlit Page
Faucet, balance lookup and transfers for the DANG token.
"""

import streamlit as st
import logging

logger = logging.getLogger(__name__)

from opend import marketplace
from opend.auth import NotAuthenticated
from opend.ui import get_session_manager, render_auth_header, sync_login_state


def _show_error(action: str, error: Exception):
    if isinstance(error, NotAuthenticated):
        st.error("Please login to use the wallet.")
    else:
        logger.error(f"[WALLET] {action} failed: {error}")
        st.error(f"{action} failed: {error}")


def render_token_wallet_page():
    """Render the token wallet interface."""
    session = get_session_manager()
    identity = sync_login_state(session)
    render_auth_header(session, identity)

    st.markdown("## 💎 MintVault Wallet")

    if identity is None:
        st.info("Login to claim tokens, check balances and transfer.")
        return

    principal = identity.sender().to_str()

    # Faucet
    st.markdown("### 🚰 Faucet")
    st.caption(f"Claim 10,000 DANG tokens to {principal}")
    if st.button("Gimme gimme", disabled=st.session_state.get("faucet_claimed", False)):
        try:
            st.session_state.faucet_result = marketplace.wallet_payout(session)
            st.session_state.faucet_claimed = True
        except Exception as e:
            _show_error("Faucet", e)
    if st.session_state.get("faucet_result"):
        st.success(st.session_state.faucet_result)

    # Balance
    st.markdown("---")
    st.markdown("### 📒 Check Balance")
    balance_input = st.text_input(
        "Principal ID",
        value=principal,
        help="Any principal id; defaults to your own"
    )
    if st.button("Check Balance"):
        try:
            result = marketplace.wallet_balance(session, balance_input or None)
            st.info(
                f"This account has a balance of {result['balance']:,} {result['symbol']}."
            )
        except ValueError as e:
            st.error(f"Invalid principal id: {e}")
        except Exception as e:
            _show_error("Balance check", e)

    # Transfer
    st.markdown("---")
    st.markdown("### 💸 Transfer")
    col1, col2 = st.columns([3, 1])
    with col1:
        recipient = st.text_input("To Account", placeholder="Recipient principal id")
    with col2:
        amount = st.number_input("Amount", min_value=1, value=1, step=1)

    if st.button("Transfer", type="primary"):
        try:
            with st.spinner("Transferring..."):
                feedback = marketplace.wallet_transfer(session, recipient, int(amount))
            st.success(feedback)
        except ValueError as e:
            st.error(f"Invalid transfer: {e}")
        except Exception as e:
            _show_error("Transfer", e)


st.set_page_config(
    page_title="Token Wallet",
    page_icon="💎",
    layout="wide"
)
render_token_wallet_page()
