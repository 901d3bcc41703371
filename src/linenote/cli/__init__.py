"""CLI package.

The ``cli`` sub-package contains the Click application used to run the
host and to inspect a storage root by hand.
"""
from __future__ import annotations
