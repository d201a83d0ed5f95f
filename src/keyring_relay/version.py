"""Version information for keyring-relay."""

__version__ = "0.3.0"
