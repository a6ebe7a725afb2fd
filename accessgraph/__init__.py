"""accessgraph: role-based permission resolution and feature flag evaluation."""

__version__ = "0.1.0"
