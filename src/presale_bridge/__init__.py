"""
Presale bridge package.

Relays presale contract events to custodial wallets on the destination chain.
"""

from .config import BridgeConfig
from .event_ingestor import EventIngestor
from .event_queue import EventQueue
from .identity import IdentityBinder
from .models import EventRecord, IdentityBinding
from .relay_dispatcher import RelayDispatcher
from .relayer import PresaleRelayer
from .wallet_actions import WalletActions

__all__ = [
    "BridgeConfig",
    "EventIngestor",
    "EventQueue",
    "EventRecord",
    "IdentityBinder",
    "IdentityBinding",
    "PresaleRelayer",
    "RelayDispatcher",
    "WalletActions",
]
__version__ = "0.1.0"
