from dataclasses import dataclass
from typing import Any

import httpx

from app.core.config import settings
from app.services.automation_errors import WebhookTransportError


@dataclass(frozen=True)
class WebhookResponse:
    status_code: int

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def build_client(timeout: float) -> httpx.Client:
    return httpx.Client(timeout=timeout, follow_redirects=False)


def send_webhook(
    url: str,
    *,
    payload: dict[str, Any],
    method: str = "POST",
    headers: dict[str, str] | None = None,
    timeout: float | None = None,
) -> WebhookResponse:
    """Deliver a JSON webhook once.

    Any HTTP status counts as delivered; only transport failures and timeouts
    raise ``WebhookTransportError``.
    """
    normalized = url.strip()
    if not (normalized.lower().startswith("https://") or normalized.lower().startswith("http://")):
        raise WebhookTransportError("Webhook URL must start with http:// or https://")

    request_headers = {"Content-Type": "application/json"}
    request_headers.update(headers or {})
    try:
        with build_client(timeout or settings.webhook_timeout_seconds) as client:
            response = client.request(method, normalized, json=payload, headers=request_headers)
    except httpx.TimeoutException as exc:
        raise WebhookTransportError(f"Webhook call timed out: {exc}") from exc
    except httpx.HTTPError as exc:
        raise WebhookTransportError(f"Webhook call failed: {exc}") from exc
    return WebhookResponse(status_code=response.status_code)
