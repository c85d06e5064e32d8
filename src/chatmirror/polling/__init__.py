"""Periodic pull refreshes."""

from chatmirror.polling.service import PollingScheduler

__all__ = ["PollingScheduler"]
