"""Proof-of-presence badge claim service."""
__version__ = "0.1.0"
