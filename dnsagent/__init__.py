"""Client discovery, profile and forwarder settings, and a control channel for a local DNS agent."""

__version__ = "0.1.0"

__all__ = ["__version__"]