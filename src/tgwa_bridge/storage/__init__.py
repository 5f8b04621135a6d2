"""
Bridge Storage

Remote persistence for the WhatsApp auth directory.
"""

from .gist_store import GistCredentialStore

__all__ = ["GistCredentialStore"]
