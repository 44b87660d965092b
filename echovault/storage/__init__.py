"""Durable entry stores."""

from echovault.storage.base import EntryStore

__all__ = ["EntryStore"]
