"""
Realtime components.

Bridges backend change notifications to debounced cache refreshes and
falls back to periodic revalidation when realtime is off or degraded.
"""

from .bridge import RealtimeBridge, SubscriptionHandle, SubscriptionState
from .scheduler import RevalidationScheduler

__all__ = [
    "RealtimeBridge",
    "SubscriptionHandle",
    "SubscriptionState",
    "RevalidationScheduler",
]
