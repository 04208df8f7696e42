"""Change detection and reconciliation of versioned policy documents."""

__version__ = "2.0.0"
