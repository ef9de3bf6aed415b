"""
Webhook notification for detection events.

Delivery is fire-and-forget: each event is POSTed once as JSON from a
daemon thread, failures are logged and never retried, and nothing here can
raise into the tick loop.

Single Responsibility: Event notification delivery.
"""
import os
import threading
from typing import Any, Dict, Optional

import requests

from logger import get_logger

from .detector import DetectionEvent
from .errors import DeliveryFailure

log = get_logger(__name__)

DEFAULT_EVENT_NAME = "gas_meter_click"
DEFAULT_TIMEOUT_SEC = 5.0


def get_webhook_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Get webhook configuration from environment variables or config.

    Environment variables override config file values.

    Args:
        config: Optional configuration dictionary (from config.json)

    Returns:
        Dictionary with webhook configuration:
        - webhook_url: Target URL (empty string disables delivery)
        - event_name: Value of the payload's ``event`` field
        - timeout_sec: HTTP timeout in seconds
    """
    webhook_config = {}

    if config and "notification" in config:
        webhook_config = config["notification"].copy()

    webhook_config["webhook_url"] = os.getenv("PULSE_WEBHOOK_URL", webhook_config.get("webhook_url", "")) or ""
    webhook_config["event_name"] = os.getenv("PULSE_EVENT_NAME", webhook_config.get("event_name", DEFAULT_EVENT_NAME))
    webhook_config["timeout_sec"] = float(os.getenv("PULSE_WEBHOOK_TIMEOUT", webhook_config.get("timeout_sec", DEFAULT_TIMEOUT_SEC)))

    return webhook_config


def build_payload(
    event: DetectionEvent,
    event_name: str = DEFAULT_EVENT_NAME,
    threshold: Optional[float] = None,
) -> Dict[str, Any]:
    """Serialize an event for the webhook endpoint."""
    payload = {
        "event": event_name,
        "distance_or_confidence": round(event.distance, 6),
        "timestamp": event.isoformat(),
    }
    if threshold is not None:
        payload["threshold"] = threshold
    return payload


def post_webhook(url: str, payload: Dict[str, Any], timeout_sec: float = DEFAULT_TIMEOUT_SEC) -> None:
    """
    POST ``payload`` as JSON.

    Raises:
        DeliveryFailure: On transport errors or a non-2xx response
    """
    try:
        response = requests.post(url, json=payload, timeout=timeout_sec)
    except requests.RequestException as e:
        raise DeliveryFailure(f"Webhook request failed: {e}") from e
    if not response.ok:
        raise DeliveryFailure(f"Webhook returned {response.status_code} {response.reason}")


def send_webhook(url: str, payload: Dict[str, Any], timeout_sec: float = DEFAULT_TIMEOUT_SEC) -> bool:
    """
    Deliver ``payload`` once.

    Returns:
        True if delivered, False otherwise (the failure is logged)
    """
    if not url:
        return False
    try:
        post_webhook(url, payload, timeout_sec)
    except DeliveryFailure as e:
        log.error("%s", e)
        return False
    log.debug("Webhook delivered to %s", url)
    return True


class WebhookNotifier:
    """
    Hands detection events to the webhook endpoint.

    Args:
        url: Target URL; empty disables delivery
        event_name: Payload ``event`` value
        timeout_sec: HTTP timeout
        background: Deliver from a daemon thread (False delivers inline)
    """

    def __init__(
        self,
        url: str,
        event_name: str = DEFAULT_EVENT_NAME,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        background: bool = True,
    ):
        self.url = url
        self.event_name = event_name
        self.timeout_sec = timeout_sec
        self.background = background

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None, **kwargs) -> "WebhookNotifier":
        webhook_config = get_webhook_config(config)
        return cls(
            webhook_config["webhook_url"],
            webhook_config["event_name"],
            webhook_config["timeout_sec"],
            **kwargs,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def notify(self, event: DetectionEvent, threshold: Optional[float] = None) -> Optional[threading.Thread]:
        """
        Send ``event`` without waiting for the result.

        Returns:
            The delivery thread when running in the background, else None
        """
        if not self.enabled:
            return None

        payload = build_payload(event, self.event_name, threshold)
        if not self.background:
            send_webhook(self.url, payload, self.timeout_sec)
            return None

        thread = threading.Thread(
            target=send_webhook,
            args=(self.url, payload, self.timeout_sec),
            name="pulse-webhook",
            daemon=True,
        )
        thread.start()
        return thread
