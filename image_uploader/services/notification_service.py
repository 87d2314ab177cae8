"""Notification Service for user-facing notices.

Pipeline services never notify directly; the edit session turns outcomes
into notices here and subscribers decide how to present them.
"""

import logging
from typing import Callable, List

from image_uploader.exceptions import ImagePipelineError, CancelledError
from image_uploader.models.notice import Notice, NoticeLevel


logger = logging.getLogger(__name__)

NoticeHandler = Callable[[Notice], None]


class NotificationService:
    """Dispatches notices to subscribers and keeps a history."""

    def __init__(self):
        self._subscribers: List[NoticeHandler] = []
        self.history: List[Notice] = []

    def subscribe(self, handler: NoticeHandler) -> Callable[[], None]:
        """
        Register a handler.

        Returns:
            Callable that unsubscribes the handler
        """
        self._subscribers.append(handler)

        def unsubscribe():
            if handler in self._subscribers:
                self._subscribers.remove(handler)

        return unsubscribe

    def notify(self, level: NoticeLevel, title: str, description: str = "") -> Notice:
        notice = Notice(level=level, title=title, description=description)
        self.history.append(notice)

        log_level = logging.ERROR if level == NoticeLevel.ERROR else logging.INFO
        logger.log(log_level, f"[{level.value}] {title}: {description}")

        for handler in list(self._subscribers):
            try:
                handler(notice)
            except Exception as e:
                logger.error(f"Notice handler {handler!r} failed: {str(e)}")

        return notice

    def success(self, title: str, description: str = "") -> Notice:
        return self.notify(NoticeLevel.SUCCESS, title, description)

    def error(self, title: str, description: str = "") -> Notice:
        return self.notify(NoticeLevel.ERROR, title, description)

    def notify_failure(self, error: Exception, description: str = "Please try again.") -> None:
        """
        Report a failed action.

        Cancellation is not a failure and produces no notice. Unexpected
        exceptions are reported generically.
        """
        if isinstance(error, CancelledError):
            logger.info(f"Operation cancelled: {str(error)}")
            return

        if isinstance(error, ImagePipelineError):
            self.error(error.user_message, description)
        else:
            self.error("Something went wrong", description)
