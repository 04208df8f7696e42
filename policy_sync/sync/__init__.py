"""Change detection and registry reconciliation."""

from policy_sync.sync.change_tracker import ChangeTracker
from policy_sync.sync.reconciler import Reconciler

__all__ = [
    "ChangeTracker",
    "Reconciler",
]
