"""Host module.

Exports the ``Dispatcher`` and the ``ChannelAdapter`` serve loop.
"""
from __future__ import annotations

from linenote.host.channel import ChannelAdapter, main, run
from linenote.host.dispatcher import Dispatcher, failure_response, success_response

__all__ = [
    "ChannelAdapter",
    "Dispatcher",
    "failure_response",
    "main",
    "run",
    "success_response",
]
