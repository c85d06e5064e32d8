"""
Network status monitor.

A single failed request is not an outage; the status flips to offline only
after several consecutive network-category failures and back to online on
the first success.
"""

import logging
from collections.abc import Callable

from chatmirror.errors import ErrorCategory, classify

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 3

StatusListener = Callable[[bool], None]


class NetworkMonitor:
    def __init__(self, failure_threshold: int = DEFAULT_FAILURE_THRESHOLD) -> None:
        self.failure_threshold = failure_threshold
        self.online = True
        self.consecutive_failures = 0
        self._listeners: list[StatusListener] = []

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_online(self, online: bool) -> None:
        if online == self.online:
            return
        self.online = online
        logger.info("Network back online" if online else "Network appears offline")
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception:
                logger.exception("Network status listener failed")

    def mark_online(self) -> None:
        self.consecutive_failures = 0
        self._set_online(True)

    def mark_failure(self, error: BaseException | None = None) -> None:
        """
        Count a failed request.

        Args:
            error: The failure; only network-category errors count
        """
        if error is not None and classify(error).category is not ErrorCategory.NETWORK:
            return
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.failure_threshold:
            self._set_online(False)
