"""Request body shaping for outbound deliveries.

The default body is the JSON envelope {eventType, payload, timestamp}. A
subscription may instead carry a payload template, and chat endpoints (Slack
incoming webhooks, Discord webhooks) get a message body they can render.
Whatever is built here is the exact text that is signed and sent.
"""

from __future__ import annotations

import json
import re
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from courier.models import WebhookEvent, WebhookSubscription

SLACK_URL_PREFIX = "https://hooks.slack.com/services/"
DISCORD_URL_PREFIX = "https://discord.com/api/webhooks/"

# Payload keys that are metadata rather than user-entered fields
_CHAT_SKIP_KEYS = frozenset(
    {"event", "eventType", "recordTypeId", "recordName", "submissionId", "ipAddress", "rawData"}
)

_PLACEHOLDER = re.compile(r"{{\s*(json\s+)?([\w.]+)\s*}}")

DISCORD_EMBED_COLOR = 5_814_783


def dump_json(value: Any) -> str:
    """Serialize to the compact JSON text used on the wire."""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), allow_nan=False)


def envelope_body(event: WebhookEvent) -> str:
    return dump_json(event.envelope())


def _lookup(context: dict[str, Any], path: str) -> Any:
    value: Any = context
    for key in path.split("."):
        if isinstance(value, dict):
            value = value.get(key)
        elif isinstance(value, list) and key.isdigit() and int(key) < len(value):
            value = value[int(key)]
        else:
            return None
        if value is None:
            return None
    return value


def render_template(template: str, context: dict[str, Any]) -> str:
    """Fill {{ key.path }} and {{ json key.path }} placeholders.

    Missing or null values render as an empty string. Plain placeholders
    render scalars as text and containers as JSON; json placeholders always
    render JSON.
    """

    def replace(match: re.Match[str]) -> str:
        value = _lookup(context, match.group(2))
        if value is None:
            return ""
        if match.group(1) or isinstance(value, (dict, list)):
            return dump_json(value)
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    return _PLACEHOLDER.sub(replace, template)


def template_context(event: WebhookEvent) -> dict[str, Any]:
    envelope = event.envelope()
    return {
        **event.payload,
        "eventType": event.event_type,
        "event": event.event_type,
        "payload": event.payload,
        "timestamp": envelope["timestamp"],
    }


def format_value(value: Any) -> str:
    """Human-readable rendering of a payload value for chat messages."""
    if value is None:
        return "N/A"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    if isinstance(value, list):
        return ", ".join(format_value(item) for item in value)
    try:
        return json.dumps(value, indent=2, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError):
        return "[Complex Object]"


def _chat_fields(payload: dict[str, Any]) -> list[tuple[str, str]]:
    fields = payload.get("fields")
    if isinstance(fields, list):
        return [
            (
                str(f.get("label") or f.get("id") or "Unknown Field"),
                format_value(f.get("value")),
            )
            for f in fields
            if isinstance(f, dict)
        ]
    return [
        (key, format_value(value))
        for key, value in payload.items()
        if key not in _CHAT_SKIP_KEYS
    ]


def _record_label(payload: dict[str, Any], fallback: str | None) -> str:
    return str(payload.get("recordName") or payload.get("recordTypeId") or fallback or "unknown")


def is_slack_url(url: str) -> bool:
    return url.startswith(SLACK_URL_PREFIX)


def is_discord_url(url: str) -> bool:
    return url.startswith(DISCORD_URL_PREFIX)


def build_slack_message(
    event_type: str, payload: dict[str, Any], timestamp: datetime
) -> dict[str, Any]:
    """Slack incoming-webhook message with one attachment field per value."""
    return {
        "text": f"New {event_type}: `{_record_label(payload, None)}`",
        "attachments": [
            {
                "color": "good",
                "fields": [
                    {"title": title, "value": value, "short": True}
                    for title, value in _chat_fields(payload)
                ],
                "footer": f"Submission ID: {payload.get('submissionId') or 'N/A'}",
                "ts": int(timestamp.timestamp()),
            }
        ],
    }


def build_discord_embed(
    event_type: str,
    payload: dict[str, Any],
    timestamp: datetime,
    record_id: str | None = None,
) -> dict[str, Any]:
    """Discord webhook message with a single embed."""
    return {
        "content": f"New {event_type} for record: `{_record_label(payload, record_id)}`",
        "embeds": [
            {
                "title": event_type.replace("_", " ").title(),
                "description": f"Record ID: `{record_id or 'N/A'}`",
                "fields": [
                    {"name": name, "value": value, "inline": True}
                    for name, value in _chat_fields(payload)
                ],
                "color": DISCORD_EMBED_COLOR,
                "timestamp": timestamp.isoformat(),
                "footer": {"text": f"Submission ID: {payload.get('submissionId') or 'N/A'}"},
            }
        ],
    }


def build_body(subscription: WebhookSubscription, event: WebhookEvent) -> str:
    """Build the exact request body for one subscription and event.

    Chat endpoints take precedence over templates.
    """
    if is_slack_url(subscription.url):
        return dump_json(build_slack_message(event.event_type, event.payload, event.timestamp))
    if is_discord_url(subscription.url):
        return dump_json(
            build_discord_embed(
                event.event_type,
                event.payload,
                event.timestamp,
                record_id=event.scope.record_id,
            )
        )
    if subscription.payload_template:
        return render_template(subscription.payload_template, template_context(event))
    return envelope_body(event)


__all__ = [
    "DISCORD_URL_PREFIX",
    "SLACK_URL_PREFIX",
    "build_body",
    "build_discord_embed",
    "build_slack_message",
    "dump_json",
    "envelope_body",
    "format_value",
    "is_discord_url",
    "is_slack_url",
    "render_template",
    "template_context",
]
