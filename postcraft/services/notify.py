"""Fire-and-forget account notifications.

Env:
  NOTIFY_WEBHOOK_URL: optional, events are POSTed there as JSON.

A notification failure is logged and never fails the calling operation.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import httpx
import structlog

from postcraft.config import settings

log = structlog.get_logger()

NotifyHook = Callable[[str, str, dict], None]

_hook: Optional[NotifyHook] = None


def _send_webhook(account_id: str, event: str, payload: dict) -> None:
    if not settings.notify_webhook_url:
        return
    r = httpx.post(
        settings.notify_webhook_url,
        json={"account_id": account_id, "event": event, "payload": payload},
        timeout=settings.notify_timeout_seconds,
    )
    r.raise_for_status()


def set_notify_hook(hook: Optional[NotifyHook]) -> None:
    """Replace the delivery hook (None restores the webhook default)."""
    global _hook
    _hook = hook


def notify(account_id: Any, event: str, **payload) -> None:
    account_id = str(account_id)
    log.info("notify", account_id=account_id, event_name=event)
    try:
        (_hook or _send_webhook)(account_id, event, payload)
    except Exception as exc:
        log.warning("notify_failed", account_id=account_id, event_name=event, error=str(exc)[:300])
