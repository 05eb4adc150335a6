"""Account adapters and the live-account directory."""
from accounts.base import AccountAdapter, AccountDirectory, LiveRequest
from accounts.gateway import GatewayAccountAdapter

__all__ = [
    "AccountAdapter", "AccountDirectory", "LiveRequest",
    "GatewayAccountAdapter",
]
