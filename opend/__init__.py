"""
OpenD Marketplace Client
An NFT marketplace client with a redirect-login session layer.

CLI Usage:
    python -m opend <command> [options]

    Commands:
        status          Show session state
        login           Log in through the identity provider (opens a browser)
        logout          End the session
        whoami          Print the current principal
        nfts            List owned and listed NFTs
        mint            Mint an NFT from an image file
        balance         Token balance
        faucet          Claim faucet tokens
        transfer        Send tokens
"""

# auth must load before agent/actors: the client factory imports them
from .auth import (
    SessionManager,
    LoginRedirect,
    BoundClients,
    Principal,
    NotAuthenticated,
    ClientBindingFailed,
)
from .agent import ReplicaAgent, AgentError, CallRejected
from .actors import Actor, OPEND_INTERFACE, TOKEN_INTERFACE
from .run_config import OpenDRunConfig

__all__ = [
    'SessionManager',
    'LoginRedirect',
    'BoundClients',
    'Principal',
    'NotAuthenticated',
    'ClientBindingFailed',
    'ReplicaAgent',
    'AgentError',
    'CallRejected',
    'Actor',
    'OPEND_INTERFACE',
    'TOKEN_INTERFACE',
    'OpenDRunConfig',
]

__version__ = '1.0.0'
