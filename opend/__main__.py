#!/usr/bin/env python3
"""
Command-line client for the OpenD marketplace
=============================================
Every command starts like a fresh page load: resume any pending login,
then re-check the session before doing anything authenticated.

Run with: python -m opend <command>
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load .env (canister ids, host) before anything reads the environment
env_path = Path(__file__).resolve().parent.parent / '.env'
if env_path.exists():
    load_dotenv(env_path)
else:
    load_dotenv()  # tries CWD

from .auth import AuthError, SessionManager
from .agent import AgentError
from .run_config import OpenDRunConfig
from . import marketplace

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S'
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_status(session: SessionManager, args) -> int:
    status = session.status()
    if status["authenticated"]:
        hours = status["remaining_ms"] / 3_600_000
        print(f"  Logged in as:   {status['principal']}")
        print(f"  Session window: {hours:.1f}h remaining")
    else:
        print("  Not logged in.")
    if status["login_in_progress"]:
        print("  A login is in progress (waiting for the identity provider).")
    return 0


def cmd_login(session: SessionManager, args) -> int:
    # imported here so the other commands work without a browser runtime
    from .auth.session_bootstrap import bootstrap_login

    identity = asyncio.run(bootstrap_login(
        session,
        redirect_uri=args.redirect_uri,
        timeout_minutes=args.timeout,
    ))
    if identity is None:
        return 1
    print(f"  Principal: {identity.sender().to_str()}")
    return 0


def cmd_logout(session: SessionManager, args) -> int:
    session.logout()
    print("  Logged out.")
    return 0


def cmd_whoami(session: SessionManager, args) -> int:
    principal = session.get_current_principal()
    if principal is None:
        print("  Not logged in.")
        return 1
    print(principal.to_str())
    return 0


def cmd_nfts(session: SessionManager, args) -> int:
    principal = session.get_current_principal()
    galleries = marketplace.load_galleries(session, principal)
    if galleries.error:
        print(f"  ⚠  {galleries.error}")
    if principal is not None:
        print(f"\n  My NFTs ({len(galleries.owned)}):")
        for nft_id in galleries.owned:
            print(f"    - {nft_id}")
    print(f"\n  Discover ({len(galleries.listed)}):")
    for nft_id in galleries.listed:
        print(f"    - {nft_id}")
    return 0


def cmd_mint(session: SessionManager, args) -> int:
    image = Path(args.image)
    new_id = marketplace.mint_nft(session, image.read_bytes(), args.name)
    print(f"  Minted! NFT id: {new_id}")
    return 0


def cmd_balance(session: SessionManager, args) -> int:
    result = marketplace.wallet_balance(session, args.principal)
    print(f"  {result['principal']} has a balance of {result['balance']:,} {result['symbol']}.")
    return 0


def cmd_faucet(session: SessionManager, args) -> int:
    print(f"  {marketplace.wallet_payout(session)}")
    return 0


def cmd_transfer(session: SessionManager, args) -> int:
    print(f"  {marketplace.wallet_transfer(session, args.recipient, args.amount)}")
    return 0


COMMANDS = {
    "status": cmd_status,
    "login": cmd_login,
    "logout": cmd_logout,
    "whoami": cmd_whoami,
    "nfts": cmd_nfts,
    "mint": cmd_mint,
    "balance": cmd_balance,
    "faucet": cmd_faucet,
    "transfer": cmd_transfer,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="opend",
        description="OpenD marketplace client",
    )
    parser.add_argument("--host", help="Replica / gateway address (default: OPEND_HOST or local replica)")
    parser.add_argument("--app-url", dest="app_url", help="App address used for local provider detection")
    parser.add_argument("--state-file", dest="state_file", help="Session state file")
    parser.add_argument("--production", action="store_true", help="Treat this as a production build")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Show session state")

    p_login = sub.add_parser("login", help="Log in through the identity provider")
    p_login.add_argument("--redirect-uri", dest="redirect_uri", default=None,
                         help="Where the provider sends the browser back (default: app URL)")
    p_login.add_argument("--timeout", type=int, default=10, help="Minutes to wait for the login")

    sub.add_parser("logout", help="End the session")
    sub.add_parser("whoami", help="Print the current principal")
    sub.add_parser("nfts", help="List owned and listed NFTs")

    p_mint = sub.add_parser("mint", help="Mint an NFT")
    p_mint.add_argument("image", help="Image file")
    p_mint.add_argument("name", help="Collection name")

    p_balance = sub.add_parser("balance", help="Token balance")
    p_balance.add_argument("principal", nargs="?", default=None, help="Principal id (default: you)")

    sub.add_parser("faucet", help="Claim faucet tokens")

    p_transfer = sub.add_parser("transfer", help="Send tokens")
    p_transfer.add_argument("recipient", help="Recipient principal id")
    p_transfer.add_argument("amount", type=int, help="Amount")

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    config = OpenDRunConfig.from_cli_args(args)
    if args.verbose:
        config.log_summary()

    session = SessionManager(config)
    session.resume()

    try:
        return COMMANDS[args.command](session, args)
    except (AuthError, AgentError, ValueError, OSError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"  ❌ {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\n  Cancelled by user.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
