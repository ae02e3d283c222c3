"""Local persistence."""

from .keys import KeyRecord, KeyStore, KeyStoreError

__all__ = ["KeyRecord", "KeyStore", "KeyStoreError"]
