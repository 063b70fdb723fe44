"""
Streamlit session glue shared by ``app.py`` and ``pages/``.

Every Streamlit script run is treated like a page load: resume a pending
redirect login from the query string, then re-check the session.

Each browser gets its own session state file.  Its id rides in the
``sid`` query parameter (and in the login ``redirect_uri``), so reloads
and the provider's redirect land back on the same state while other
visitors of the same server never share it.
"""

from __future__ import annotations

import logging
import secrets
from typing import Optional
from urllib.parse import urlencode

import streamlit as st

from .auth import AnyIdentity, JsonFileSessionStore, LoginRedirect, SessionManager
from .auth.identity_provider import CALLBACK_KEYS, is_callback
from .auth.session_store import scoped_state_path
from .run_config import OpenDRunConfig

logger = logging.getLogger(__name__)


SID_PARAM = "sid"


@st.cache_resource
def get_app_config() -> OpenDRunConfig:
    config = OpenDRunConfig.from_env()
    config.log_summary()
    return config


def browser_session_id() -> str:
    """This browser's session id; minted on the first visit."""
    for candidate in (st.query_params.get(SID_PARAM), st.session_state.get("browser_sid")):
        if not candidate:
            continue
        try:
            scoped_state_path(".", candidate)
        except ValueError:
            logger.warning("[UI] Ignoring malformed session id")
            continue
        sid = candidate
        break
    else:
        sid = secrets.token_urlsafe(24)
        logger.info("[UI] New browser session")

    st.session_state.browser_sid = sid
    if st.query_params.get(SID_PARAM) != sid:
        st.query_params[SID_PARAM] = sid
    return sid


def redirect_uri_for(config: OpenDRunConfig, sid: str) -> str:
    separator = "&" if "?" in config.app_url else "?"
    return f"{config.app_url}{separator}{urlencode({SID_PARAM: sid})}"


def get_session_manager() -> SessionManager:
    """A manager over this browser's own state file."""
    config = get_app_config()
    sid = browser_session_id()
    store = JsonFileSessionStore(scoped_state_path(config.session_state_path, sid))
    return SessionManager(config, store=store)


def sync_login_state(session: SessionManager) -> Optional[AnyIdentity]:
    """Resume any redirect callback, then return the checked identity."""
    params = {key: st.query_params.get(key) for key in st.query_params.keys()}
    if is_callback(params):
        identity = session.resume(params)
        # drop delegation / state from the address bar; sid stays
        for key in CALLBACK_KEYS:
            if key in st.query_params:
                del st.query_params[key]
        if identity is None:
            st.session_state.login_error = "Login did not complete. Please try again."
    return session.check_auth()


def render_auth_header(session: SessionManager, identity: Optional[AnyIdentity]) -> None:
    """Principal preview + login/logout controls in the sidebar."""
    st.sidebar.markdown("## 🔐 Account")

    error = st.session_state.pop("login_error", None)
    if error:
        st.sidebar.error(error)

    if identity is not None:
        principal = identity.sender().to_str()
        st.sidebar.markdown(f"Logged in as `{principal[:8]}...`")
        if st.sidebar.button("Logout", key="logout"):
            try:
                session.logout()
            except Exception as e:
                logger.error(f"[UI] Logout error: {e}")
            st.session_state.pop("login_url", None)
            st.session_state.pop("galleries", None)
            st.rerun()
        return

    if session.login_in_progress() and st.session_state.get("login_url"):
        st.sidebar.info("Finish logging in at the identity provider, then come back to this page.")

    if st.sidebar.button("Login", key="login", type="primary"):
        redirect_uri = redirect_uri_for(session.config, browser_session_id())
        result = session.login(redirect_uri=redirect_uri)
        if isinstance(result, LoginRedirect):
            st.session_state.login_url = result.url
        else:
            st.rerun()

    login_url = st.session_state.get("login_url")
    if login_url:
        st.sidebar.link_button("Continue to Internet Identity ➜", login_url)
