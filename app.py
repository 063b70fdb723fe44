"""
OpenD Marketplace - Streamlit Frontend
Discover, mint and collect NFTs with Internet Identity login.
"""

import streamlit as st
import pandas as pd
import logging
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from opend import marketplace
from opend.auth import NotAuthenticated
from opend.ui import get_session_manager, render_auth_header, sync_login_state

# Page configuration
st.set_page_config(
    page_title="OpenD",
    page_icon="💎",
    layout="wide",
    initial_sidebar_state="expanded"
)

# Title styles for the marketplace header
st.markdown("""
<style>
    .main-header { font-size: 2.2rem; font-weight: 800; color: #0F172A; margin: 0; }
    .sub-header { font-size: 0.95rem; color: #475569; margin-bottom: 1.5rem; }
</style>
""", unsafe_allow_html=True)


def init_session_state():
    """Gallery cache and the last minted id survive reruns."""
    if 'galleries' not in st.session_state:
        st.session_state.galleries = None
    if 'minted_id' not in st.session_state:
        st.session_state.minted_id = None


def render_gallery(title: str, ids: list, empty_text: str):
    """Render a list of NFT ids."""
    st.markdown(f"### {title}")
    if not ids:
        st.info(empty_text)
        return
    df = pd.DataFrame({'NFT ID': ids})
    df.index = df.index + 1
    st.dataframe(df, width="stretch")


def render_minter(session, identity):
    """Render the mint form."""
    st.markdown("### 🎨 Create NFT")

    if identity is None:
        st.warning("Please login to mint NFTs")

    if st.session_state.minted_id:
        st.success(f"Minted! NFT id: `{st.session_state.minted_id}`")
        if st.button("Mint another"):
            st.session_state.minted_id = None
            st.rerun()
        return

    image = st.file_uploader(
        "Upload Image",
        type=["png", "jpg", "jpeg", "gif", "svg", "webp"],
    )
    name = st.text_input("Collection Name", placeholder="e.g. CryptoDunks")

    if st.button("Mint NFT", type="primary", disabled=identity is None):
        if not image or not name:
            st.error("Both an image and a collection name are required")
            return
        try:
            with st.spinner("Minting..."):
                new_id = marketplace.mint_nft(session, image.getvalue(), name)
                st.session_state.minted_id = new_id
                st.session_state.galleries = marketplace.refresh_after_mint(
                    session, identity.sender()
                )
        except NotAuthenticated:
            st.error("Your session has expired. Please login again.")
            return
        except Exception as e:
            logger.exception("Mint failed")
            st.error(f"Failed to mint NFT. Please try again: {e}")
            return
        st.rerun()


def main():
    init_session_state()

    session = get_session_manager()
    identity = sync_login_state(session)
    principal = identity.sender() if identity else None

    render_auth_header(session, identity)

    # Header
    st.markdown('<p class="main-header">💎 OpenD</p>', unsafe_allow_html=True)
    st.markdown(
        '<p class="sub-header">Discover, mint and collect NFTs</p>',
        unsafe_allow_html=True
    )

    viewer = principal.to_str() if principal else None
    stale = st.session_state.get("galleries_for") != viewer
    refresh = st.sidebar.button("🔄 Refresh")
    if st.session_state.galleries is None or stale or refresh:
        st.session_state.galleries = marketplace.load_galleries(session, principal)
        st.session_state.galleries_for = viewer
    galleries = st.session_state.galleries

    if galleries.error:
        st.warning(f"Could not load NFTs: {galleries.error}")

    tab_discover, tab_minter, tab_collection = st.tabs(["Discover", "Minter", "My NFTs"])

    with tab_discover:
        render_gallery("Discover", galleries.listed, "No NFTs are listed yet.")

    with tab_minter:
        render_minter(session, identity)

    with tab_collection:
        if identity is None:
            st.info("Login to see your collection.")
        else:
            render_gallery("My NFTs", galleries.owned, "You don't own any NFTs yet.")


if __name__ == "__main__":
    main()
