"""Editing lock module.

Exports ``EditLockRegistry`` and the ``EditLock`` marker type.
"""
from __future__ import annotations

from linenote.locks.registry import DEFAULT_TTL, RECORD_NAME, EditLock, EditLockRegistry

__all__ = ["DEFAULT_TTL", "RECORD_NAME", "EditLock", "EditLockRegistry"]
