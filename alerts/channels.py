"""Notification delivery channels."""
import logging
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable
from urllib.parse import urlparse

import requests

from __version__ import __version__
from models.enums import ChannelType

logger = logging.getLogger("signalengine.alerts.channels")


@runtime_checkable
class NotificationChannel(Protocol):
    def send(self, notification) -> bool: ...


def _is_http_url(value) -> bool:
    try:
        parsed = urlparse(value or "")
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class EmailChannel:
    """Deliver notifications over SMTP to the notification's recipient address."""

    def __init__(self, config: dict, sender=None):
        if sender is None:
            from notifications.email_sender import EmailSender
            sender = EmailSender(config)
        self.sender = sender

    def send(self, notification) -> bool:
        return self.sender.send_notification(
            to_address=notification.recipient,
            subject=notification.subject,
            body=notification.body,
        )


class WebhookChannel:
    """POST a JSON payload to the notification's recipient URL.

    Any 2xx response counts as delivered. Network errors and other statuses
    return False; the dispatch stage owns retries.
    """

    def __init__(self, timeout=10, session=None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": f"SignalEngine/{__version__}"})

    def _payload(self, notification):
        created = notification.created_at
        return {
            "notificationId": notification.id,
            "signalId": notification.signal_id,
            "subject": notification.subject,
            "body": notification.body,
            "createdAt": created.isoformat() if created else None,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def _post(self, notification, payload) -> bool:
        url = notification.recipient
        if not _is_http_url(url):
            logger.warning(f"Notification {notification.id} has invalid webhook URL: {url!r}")
            return False
        try:
            resp = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"HTTP error sending notification {notification.id} to {url}: {e}")
            return False

        if 200 <= resp.status_code < 300:
            logger.info(f"Notification {notification.id} delivered to {url} ({resp.status_code})")
            return True
        logger.warning(
            f"Notification {notification.id} rejected by {url}. Status: {resp.status_code}, "
            f"Response: {resp.text[:500]}"
        )
        return False

    def send(self, notification) -> bool:
        return self._post(notification, self._payload(notification))


class SlackChannel(WebhookChannel):
    """Slack incoming webhook: the recipient is the hook URL."""

    def _payload(self, notification):
        return {"text": f"*{notification.subject}*\n{notification.body}"}


class ChannelDispatcher:
    """Route a notification to the sender for its channel code."""

    def __init__(self, channels=None):
        self.channels = {}
        for code, channel in (channels or {}).items():
            self.register(code, channel)

    @classmethod
    def from_config(cls, config):
        timeout = config.get("webhook", {}).get("timeout", 10)
        return cls({
            ChannelType.EMAIL.value: EmailChannel(config),
            ChannelType.WEBHOOK.value: WebhookChannel(timeout=timeout),
            ChannelType.SLACK.value: SlackChannel(timeout=timeout),
        })

    def register(self, channel_code, channel):
        if not isinstance(channel, NotificationChannel):
            raise TypeError(f"Channel for {channel_code} has no send(notification) method")
        self.channels[str(channel_code).upper()] = channel

    def dispatch(self, notification, channel_code) -> bool:
        channel = self.channels.get(str(channel_code).upper())
        if channel is None:
            logger.warning(f"No channel registered for {channel_code}; notification {notification.id} not sent")
            return False
        return bool(channel.send(notification))
