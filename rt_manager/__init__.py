"""rt-manager: refresh-token lifecycle management."""

__version__ = "0.1.0"
