"""
Taskflow Notifications — fire-and-forget messages to board members.

Sinks:
- InMemoryNotificationSink: per-user inbox, used by tests and the HTTP API
- WebhookNotificationSink: POSTs each notification as JSON, HMAC-SHA256 signed

Delivery failures are the caller's to log; a sink never retries forever and
never blocks a board mutation from committing.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional
import hashlib
import hmac
import json
import logging
import time

import httpx
from pydantic import BaseModel, Field

from board.models.records import new_id, utcnow
from workflow.config import NotificationConfig

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    ASSIGNMENT = "ASSIGNMENT"
    SYSTEM = "SYSTEM"
    APPROVAL = "APPROVAL"
    DUE_DATE = "DUE_DATE"


class Notification(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    title: str
    message: str
    kind: NotificationKind = NotificationKind.SYSTEM
    link_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    read: bool = False


class NotificationSink(ABC):
    """Anything that can take a notification for a user."""

    def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        kind: NotificationKind = NotificationKind.SYSTEM,
        link_id: Optional[str] = None,
    ) -> Notification:
        notification = Notification(user_id=user_id, title=title, message=message, kind=kind, link_id=link_id)
        self.deliver(notification)
        return notification

    @abstractmethod
    def deliver(self, notification: Notification) -> None:
        ...


class InMemoryNotificationSink(NotificationSink):
    def __init__(self):
        self._inbox: dict[str, list[Notification]] = {}

    def deliver(self, notification: Notification) -> None:
        self._inbox.setdefault(notification.user_id, []).insert(0, notification)

    def inbox(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        items = self._inbox.get(user_id, [])
        return [n for n in items if not n.read] if unread_only else list(items)

    def mark_read(self, user_id: str, notification_id: Optional[str] = None) -> int:
        """Mark one notification, or all of a user's, as read. Returns how many changed."""
        changed = 0
        for n in self._inbox.get(user_id, []):
            if not n.read and (notification_id is None or n.id == notification_id):
                n.read = True
                changed += 1
        return changed


@dataclass
class WebhookDelivery:
    """Record of one webhook delivery."""
    notification_id: str
    url: str
    status_code: int = 0
    attempt: int = 1
    success: bool = False
    error: Optional[str] = None
    latency_ms: float = 0.0
    delivered_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "notification_id": self.notification_id,
            "url": self.url,
            "status_code": self.status_code,
            "attempt": self.attempt,
            "success": self.success,
            "error": self.error,
            "latency_ms": round(self.latency_ms, 1),
            "delivered_at": self.delivered_at.isoformat(),
        }


def sign_payload(payload: str, secret: str) -> str:
    """HMAC-SHA256 hex digest of the request body."""
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


class WebhookNotificationSink(NotificationSink):
    """Delivers notifications to a single webhook endpoint."""

    MAX_ATTEMPTS = 2
    BACKOFF_BASE = 0.5

    def __init__(
        self,
        url: str,
        secret: str = "",
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = url
        self.secret = secret
        self.timeout = timeout
        self._client = httpx.Client(timeout=timeout, transport=transport)
        self.deliveries: list[WebhookDelivery] = []

    @classmethod
    def from_config(cls, config: NotificationConfig, transport: Optional[httpx.BaseTransport] = None) -> "WebhookNotificationSink":
        return cls(config.webhook_url, config.webhook_secret, config.timeout_seconds, transport=transport)

    def deliver(self, notification: Notification) -> None:
        body = json.dumps(notification.model_dump(mode="json"), sort_keys=True)
        headers = {
            "Content-Type": "application/json",
            "X-Taskflow-Event": f"notification.{notification.kind.value.lower()}",
            "X-Taskflow-Delivery": new_id(),
        }
        if self.secret:
            headers["X-Taskflow-Signature"] = f"sha256={sign_payload(body, self.secret)}"

        error: Optional[str] = None
        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            start = time.monotonic()
            try:
                resp = self._client.post(self.url, content=body, headers=headers)
                latency = (time.monotonic() - start) * 1000
                if 200 <= resp.status_code < 300:
                    self.deliveries.append(WebhookDelivery(
                        notification_id=notification.id,
                        url=self.url,
                        status_code=resp.status_code,
                        attempt=attempt,
                        success=True,
                        latency_ms=latency,
                    ))
                    return
                error = f"HTTP {resp.status_code}"
            except httpx.HTTPError as exc:
                error = str(exc) or exc.__class__.__name__
            logger.warning("webhook attempt %d to %s failed: %s", attempt, self.url, error)
            if attempt < self.MAX_ATTEMPTS:
                time.sleep(self.BACKOFF_BASE * (2 ** (attempt - 1)))

        self.deliveries.append(WebhookDelivery(
            notification_id=notification.id,
            url=self.url,
            attempt=self.MAX_ATTEMPTS,
            error=error,
        ))
        raise NotificationDeliveryError(f"webhook delivery to {self.url} failed: {error}")

    def close(self) -> None:
        self._client.close()


class NotificationDeliveryError(RuntimeError):
    pass
