"""Notification sinks: Telegram bot and log-only."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ledgercore.config import settings
from ledgercore.connectors.base import NotificationSink

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org/bot{token}/sendMessage"


def send_message(text: str, parse_mode: str = "Markdown") -> bool:
    """Send a message via Telegram bot API. Returns True on success.

    Falls back to plain text if Markdown parsing fails (HTTP 400).
    """
    if not settings.telegram_bot_token or not settings.telegram_chat_id:
        logger.warning("Telegram not configured, skipping notification")
        return False

    url = TELEGRAM_API.format(token=settings.telegram_bot_token)
    payload = {"chat_id": settings.telegram_chat_id, "text": text}
    if parse_mode:
        payload["parse_mode"] = parse_mode

    try:
        resp = httpx.post(url, json=payload, timeout=10)
        resp.raise_for_status()
        return True
    except httpx.HTTPStatusError as e:
        if e.response.status_code == 400 and parse_mode:
            logger.warning("Telegram Markdown parse failed, retrying as plain text")
            return send_message(text, parse_mode="")
        logger.error("Telegram HTTP error %d: %s", e.response.status_code, e)
        return False
    except httpx.TimeoutException:
        logger.warning("Telegram request timed out")
        return False
    except Exception:
        logger.exception("Failed to send Telegram message")
        return False


def format_sip_notification(event_type: str, payload: dict[str, Any]) -> str:
    """Render a SIP event for Telegram."""
    plan = payload.get("plan_id", "?")
    asset = payload.get("asset", "")
    if event_type == "SIP_SUCCESS":
        return (
            f"*SIP Executed* #{plan}\n"
            f"Bought {payload.get('asset_qty')} {asset} @ {payload.get('price')}\n"
            f"Invested {payload.get('amount')} {payload.get('currency', '')}"
        )
    if event_type == "SIP_FAILED":
        return (
            f"*SIP Failed* #{plan} {asset}\n"
            f"Reason: {payload.get('reason')}\n"
            f"Attempt {payload.get('failure_count')}, retry at {payload.get('next_execution')}"
        )
    if event_type == "SIP_PAUSED":
        return f"*SIP Paused* #{plan} {asset} after {payload.get('failure_count')} failures"
    if event_type == "GOAL_ACHIEVED":
        return (
            f"*Goal Achieved* #{plan} {asset}\n"
            f"Value {payload.get('current_value')} >= goal {payload.get('goal_amount')}"
        )
    lines = [f"*{event_type}*"] + [f"{k}: {v}" for k, v in payload.items()]
    return "\n".join(lines)


def format_reconciliation_alert(issues: list) -> str:
    lines = [f"*Ledger Reconciliation Failed* ({len(issues)})"]
    for issue in issues[:10]:
        lines.append(
            f"{issue.owner}/{issue.asset}: position={issue.position_amount} "
            f"lots={issue.open_lot_amount}"
        )
    if len(issues) > 10:
        lines.append(f"... and {len(issues) - 10} more")
    return "\n".join(lines)


class TelegramNotificationSink(NotificationSink):
    def notify(self, owner_id: str, event_type: str, payload: dict[str, Any]) -> bool:
        text = format_sip_notification(event_type, payload)
        return send_message(f"{text}\nowner: {owner_id}")


class LoggingNotificationSink(NotificationSink):
    def notify(self, owner_id: str, event_type: str, payload: dict[str, Any]) -> bool:
        logger.info("notify owner=%s event=%s payload=%s", owner_id, event_type, payload)
        return True
