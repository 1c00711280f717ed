"""Notification dispatch runner.

Picks up queued notifications and hands each to its channel. A notification
whose retry budget is spent is skipped and never attempted again; everything
else is either marked sent or has its retry count bumped. Notifications with
retries left are taken first, so exhausted ones only fill leftover batch
space. All outcomes of a cycle are committed together.
"""
import logging
import time
from dataclasses import dataclass

from models.entities import utcnow
from utils.cancellation import CycleCancelled, check

logger = logging.getLogger("signalengine.notifications.dispatcher")


@dataclass
class DispatchResult:
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    duration: float = 0.0


class NotificationDispatchRunner:
    def __init__(self, db, channels, clock=utcnow):
        self.db = db
        self.channels = channels
        self.clock = clock

    def run(self, max_notifications=100, max_retry_count=3, cancel=None) -> DispatchResult:
        started = time.monotonic()
        result = DispatchResult()

        pending = self.db.get_pending_notifications(max_retry_count)
        if not pending:
            logger.debug("No pending notifications to dispatch")
            result.duration = time.monotonic() - started
            return result

        logger.info(f"Found {len(pending)} pending notifications to dispatch")

        try:
            for notification in pending[:max_notifications]:
                check(cancel)

                if notification.retry_count >= max_retry_count:
                    logger.warning(
                        f"Notification {notification.id} exceeded max retry count "
                        f"({notification.retry_count}/{max_retry_count}), skipping"
                    )
                    result.skipped += 1
                    continue

                self._dispatch_one(notification, result)
        except CycleCancelled:
            self.db.commit()
            raise

        self.db.commit()
        result.duration = time.monotonic() - started
        logger.info(
            f"Notification dispatch complete: {result.sent} sent, {result.failed} failed, "
            f"{result.skipped} skipped"
        )
        return result

    def _dispatch_one(self, notification, result):
        try:
            channel_code = self.db.resolve_lookup_code(notification.channel_type_id)
            delivered = self.channels.dispatch(notification, channel_code)
        except CycleCancelled:
            raise
        except Exception as e:
            notification.mark_failed(str(e) or e.__class__.__name__)
            self.db.update_notification(notification)
            result.failed += 1
            logger.error(f"Error dispatching notification {notification.id}: {e}", exc_info=True)
            return

        if delivered:
            notification.mark_sent(self.clock())
            result.sent += 1
            logger.debug(f"Notification {notification.id} sent via {channel_code}")
        else:
            notification.mark_failed("Dispatch returned false")
            result.failed += 1
            logger.warning(
                f"Notification {notification.id} dispatch failed via {channel_code} "
                f"(attempt {notification.retry_count})"
            )
        self.db.update_notification(notification)
