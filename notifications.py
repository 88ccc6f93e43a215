"""Toast/notification collaborator."""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, title: str, message: str) -> None: ...


class LoggingNotifier:
    """Default notifier for headless use: toasts become log lines."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    def notify(self, title: str, message: str) -> None:
        self.sent.append((title, message))
        logger.warning(f"{title}: {message}")
