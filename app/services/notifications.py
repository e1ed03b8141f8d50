"""Host notifications. Rendering and delivery live outside this service; we only
hand over a template key, the host and the template variables."""
from __future__ import annotations

import logging
from typing import Any, Protocol


log = logging.getLogger(__name__)

ADS_EXPIRING_SOON = "ADS_EXPIRING_SOON"
ADS_EXPIRED = "ADS_EXPIRED"
SUBSCRIPTION_ACTIVATED = "SUBSCRIPTION_ACTIVATED"
SUBSCRIPTION_RENEWED = "SUBSCRIPTION_RENEWED"
SUBSCRIPTION_CANCELLED = "SUBSCRIPTION_CANCELLED"
PAYMENT_FAILED = "PAYMENT_FAILED"
TRIAL_CONVERTED = "TRIAL_CONVERTED"


class Notifier(Protocol):
    async def send(self, template: str, host_id: str, variables: dict[str, Any]) -> None: ...


class LoggingNotifier:
    """Default notifier: records what would be sent."""

    async def send(self, template: str, host_id: str, variables: dict[str, Any]) -> None:
        log.info("notify %s host=%s vars=%s", template, host_id, variables)


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    async def send(self, template: str, host_id: str, variables: dict[str, Any]) -> None:
        self.sent.append((template, host_id, dict(variables)))

    def templates(self) -> list[str]:
        return [t for t, _, _ in self.sent]


_notifier: Notifier = LoggingNotifier()


def get_notifier() -> Notifier:
    return _notifier


def set_notifier(notifier: Notifier) -> Notifier:
    """Swap the process-wide notifier; returns the previous one."""
    global _notifier
    previous, _notifier = _notifier, notifier
    return previous


async def notify(template: str, host_id: str, variables: dict[str, Any] | None = None) -> bool:
    """Fire-and-forget: failures are logged, never raised."""
    try:
        await _notifier.send(template, host_id, variables or {})
        return True
    except Exception:
        log.exception("notify: %s for host=%s failed", template, host_id)
        return False
