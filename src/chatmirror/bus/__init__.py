"""Pushed event decoding and batching."""

from chatmirror.bus.events import Event, UnknownEvent, decode_event
from chatmirror.bus.queue import EventBatcher

__all__ = ["Event", "UnknownEvent", "decode_event", "EventBatcher"]
