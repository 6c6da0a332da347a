"""Notification gateway consumed by the follow-up engine.

Delivery itself (in-app, email, push) is owned by an external notification
service. The engine only needs ``notify_user`` returning the id of the
created notification, or None when nothing was created.

Usage:
    gateway = HttpNotificationGateway(
        base_url="http://notifications:8080", timeout=10.0
    )
    notification_id = gateway.notify_user(
        NotificationRequest(user_id="u-1", title="...", message="...")
    )
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx

from recruitflow_core.config import Settings
from recruitflow_core.domain.errors import TransientDispatchError

logger = logging.getLogger(__name__)


# Notification types used by the engine
TYPE_FOLLOWUP = "followup"
TYPE_FOLLOWUP_REMINDER = "followup_reminder"


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class NotificationRequest:
    """A single user notification.

    Attributes:
        user_id: Recipient user id
        title: Short title
        message: Body text
        type: Notification type (followup, followup_reminder)
        priority: Delivery priority (normal, high)
        link: Optional deep link into the dashboard
        metadata: Extra data forwarded to the notification service
    """

    user_id: str
    title: str
    message: str
    type: str = TYPE_FOLLOWUP
    priority: str = "normal"
    link: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "priority": self.priority,
            "link": self.link,
            "metadata": self.metadata,
        }


class NotificationGateway(Protocol):
    """Capability interface of the notification service."""

    def notify_user(self, request: NotificationRequest) -> Optional[str]:
        """Create a notification.

        Returns:
            The notification id, or None if nothing was created.

        Raises:
            TransientDispatchError: On transport failures and timeouts.
        """
        ...


# =============================================================================
# GATEWAYS
# =============================================================================


class HttpNotificationGateway:
    """Notification gateway backed by the notification service's HTTP API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        token: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the gateway.

        Args:
            base_url: Base URL of the notification service.
            timeout: Request timeout in seconds.
            token: Optional bearer token.
            transport: Optional httpx transport (tests use MockTransport).
        """
        headers = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.base_url = base_url
        self.timeout = timeout
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def notify_user(self, request: NotificationRequest) -> Optional[str]:
        try:
            response = self._client.post("/notifications", json=request.to_payload())
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise TransientDispatchError(f"Notification timeout: {e}") from e
        except httpx.HTTPStatusError as e:
            raise TransientDispatchError(
                f"Notification service returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise TransientDispatchError(f"Notification transport error: {e}") from e

        try:
            data = response.json()
        except ValueError:
            logger.warning("Notification service returned a non-JSON body")
            return None

        notification_id = data.get("id") if isinstance(data, dict) else None
        return str(notification_id) if notification_id is not None else None


class NullNotificationGateway:
    """Gateway used when no notification service is configured.

    Never creates anything, so reminders stay unsent and are retried once
    a real gateway is configured.
    """

    def notify_user(self, request: NotificationRequest) -> Optional[str]:
        logger.debug(
            "No notification gateway configured, dropping notification",
            extra={"user_id": request.user_id, "type": request.type},
        )
        return None


def build_notification_gateway(settings: Settings) -> NotificationGateway:
    """Build the gateway described by the settings."""
    if not settings.notification_gateway_url:
        return NullNotificationGateway()
    return HttpNotificationGateway(
        base_url=settings.notification_gateway_url,
        timeout=settings.notification_timeout_seconds,
        token=settings.notification_gateway_token,
    )
