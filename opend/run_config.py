"""
Unified Run Configuration
=========================
Single source of truth for the client's defaults and environment wiring.

The Streamlit app, the CLI and the session layer all read from this
object.  Environment variables (optionally loaded from ``.env`` by the
entry points) populate it via ``OpenDRunConfig.from_env()``.

Environment variables:
    ``OPEND_HOST``                       — replica / gateway address
    ``OPEND_APP_URL``                    — where this app is served (redirect target)
    ``OPEND_ENV`` / ``NODE_ENV``         — ``production`` for a production build
    ``INTERNET_IDENTITY_CANISTER_ID``    — local identity provider canister
    ``CANISTER_ID_OPEND`` / ``CANISTER_ID_TOKEN`` — backend canisters
    ``OPEND_ROOT_KEY``                   — embedded root key (hex DER)
    ``OPEND_SESSION_STATE``              — session store file
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Canonical defaults — the ONLY place these numbers live
# ---------------------------------------------------------------------------
_DEFAULTS = {
    "host": "http://127.0.0.1:8000",
    "app_url": "http://localhost:8501",
    "production_identity_provider": "https://identity.ic0.app",
    "local_identity_provider": "http://localhost:8000",
    "ii_fallback_canister_id": "uxrrr-q7777-77774-qaaaq-cai",
    "canister_ids_path": ".dfx/local/canister_ids.json",
    "network": "local",
    "session_state_path": ".opend/session_state.json",
    "session_window_hours": 24,
    "max_time_to_live_days": 7,
    "request_timeout": 30,
}

LOCAL_HOSTNAMES = ("localhost", "127.0.0.1")
LOCAL_PORTS = ("8080", "8000")


def _env(name: str) -> Optional[str]:
    """Env lookup that treats empty and the literal ``"undefined"`` as unset."""
    value = (os.environ.get(name, "") or "").strip()
    if not value or value == "undefined":
        return None
    return value


def load_canister_ids(path: str, network: str = "local") -> Dict[str, str]:
    """Read ``{name: {network: id}}`` as written by the local replica tooling.

    Returns an empty dict if the file is missing or unreadable.
    """
    p = Path(path)
    if not p.exists():
        return {}
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning(f"[CONFIG] Could not read canister ids from {path}: {exc}")
        return {}
    ids: Dict[str, str] = {}
    for name, networks in data.items():
        if isinstance(networks, dict) and networks.get(network):
            ids[name] = networks[network]
    return ids


@dataclass
class OpenDRunConfig:
    """
    Configuration consumed by the session layer, agents and UI.

    Populate via:
      - ``OpenDRunConfig()``                 → all defaults
      - ``OpenDRunConfig(production=True)``   → override one value
      - ``OpenDRunConfig.from_env()``         → from the environment
      - ``OpenDRunConfig.from_cli_args(ns)``  → env + argparse overrides
    """

    # ---- Network ----
    host: str = _DEFAULTS["host"]
    app_url: str = _DEFAULTS["app_url"]
    production: bool = False
    root_key_hex: Optional[str] = None
    request_timeout: int = _DEFAULTS["request_timeout"]

    # ---- Canisters ----
    ii_canister_id: Optional[str] = None
    opend_canister_id: Optional[str] = None
    token_canister_id: Optional[str] = None

    # ---- Session ----
    session_state_path: str = _DEFAULTS["session_state_path"]
    session_window_hours: float = _DEFAULTS["session_window_hours"]
    max_time_to_live_days: int = _DEFAULTS["max_time_to_live_days"]

    # Resolved once in __post_init__.
    trust_local_transport: bool = field(init=False, default=False)

    def __post_init__(self):
        self.trust_local_transport = self.is_local_host

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_env(cls, **overrides) -> "OpenDRunConfig":
        """Build config from environment variables.

        Canister ids fall back to the local canister id file when the
        environment does not name them.
        """
        env_mode = _env("OPEND_ENV") or _env("NODE_ENV") or ""
        canister_file = _env("OPEND_CANISTER_IDS") or _DEFAULTS["canister_ids_path"]
        file_ids = load_canister_ids(canister_file, _env("OPEND_NETWORK") or _DEFAULTS["network"])

        values = dict(
            host=_env("OPEND_HOST") or _DEFAULTS["host"],
            app_url=_env("OPEND_APP_URL") or _DEFAULTS["app_url"],
            production=env_mode.lower() == "production",
            root_key_hex=_env("OPEND_ROOT_KEY"),
            ii_canister_id=_env("INTERNET_IDENTITY_CANISTER_ID") or file_ids.get("internet_identity"),
            opend_canister_id=_env("CANISTER_ID_OPEND") or file_ids.get("opend"),
            token_canister_id=_env("CANISTER_ID_TOKEN") or file_ids.get("token"),
            session_state_path=_env("OPEND_SESSION_STATE") or _DEFAULTS["session_state_path"],
        )
        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_cli_args(cls, args) -> "OpenDRunConfig":
        """Build config from the environment, then apply argparse overrides."""
        overrides = {}
        if getattr(args, "host", None):
            overrides["host"] = args.host
        if getattr(args, "app_url", None):
            overrides["app_url"] = args.app_url
        if getattr(args, "state_file", None):
            overrides["session_state_path"] = args.state_file
        if getattr(args, "production", False):
            overrides["production"] = True
        return cls.from_env(**overrides)

    # -----------------------------------------------------------------------
    # Derived values
    # -----------------------------------------------------------------------
    @property
    def is_local_host(self) -> bool:
        """True when the agent host is a local development replica."""
        hostname = (urlparse(self.host).hostname or "").lower()
        return hostname in LOCAL_HOSTNAMES

    @property
    def is_local_app(self) -> bool:
        """True when the app itself is served from a development address."""
        parsed = urlparse(self.app_url)
        hostname = (parsed.hostname or "").lower()
        port = str(parsed.port) if parsed.port else ""
        return hostname in LOCAL_HOSTNAMES or port in LOCAL_PORTS

    @property
    def needs_root_key_fetch(self) -> bool:
        """No embedded production root key can be assumed."""
        return not self.production or self.is_local_host

    @property
    def session_window_ms(self) -> int:
        return int(self.session_window_hours * 60 * 60 * 1000)

    @property
    def max_time_to_live_ns(self) -> int:
        return self.max_time_to_live_days * 24 * 60 * 60 * 1000 * 1000 * 1000

    @property
    def local_identity_provider(self) -> str:
        return _DEFAULTS["local_identity_provider"]

    @property
    def production_identity_provider(self) -> str:
        return _DEFAULTS["production_identity_provider"]

    @property
    def resolved_ii_canister_id(self) -> str:
        return self.ii_canister_id or _DEFAULTS["ii_fallback_canister_id"]

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self) -> None:
        """Emit a structured summary to the logger."""
        logger.info("=" * 60)
        logger.info("OPEND RUN CONFIG")
        logger.info("=" * 60)
        logger.info(f"  Host:             {self.host}")
        logger.info(f"  App URL:          {self.app_url}")
        logger.info(f"  Build:            {'production' if self.production else 'development'}")
        logger.info(f"  Local Transport:  {'trusted' if self.trust_local_transport else 'verified'}")
        logger.info(f"  OpenD Canister:   {self.opend_canister_id or '<unset>'}")
        logger.info(f"  Token Canister:   {self.token_canister_id or '<unset>'}")
        logger.info(f"  Session State:    {self.session_state_path}")
        logger.info(f"  Session Window:   {self.session_window_hours}h")
        logger.info("=" * 60)
