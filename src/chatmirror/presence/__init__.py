"""Presence tracking and broadcasting."""

from chatmirror.presence.activity import ActivityMonitor
from chatmirror.presence.tracker import PresenceTracker

__all__ = ["ActivityMonitor", "PresenceTracker"]
