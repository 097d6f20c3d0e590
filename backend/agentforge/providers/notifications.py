"""Extraction of notifications embedded in provider payloads.

Hooks and tool servers can smuggle side-channel messages through any backend
by attaching a `notification` or `notifications` field (or an object whose
type mentions "notification") anywhere inside a streamed payload. Adapters run
every decoded payload through extract_notification_events and yield the
results ahead of the payload's own event.
"""

from __future__ import annotations

from typing import Any

from agentforge.agent.events import NotificationEvent

_SKIPPED_KEYS = {"metadata", "notification", "notifications"}


def extract_notification_events(payload: Any) -> list[NotificationEvent]:
    found: list[NotificationEvent] = []
    seen: set[int] = set()

    def push(value: Any, metadata: Any, fallback: dict | None) -> None:
        meta = metadata if isinstance(metadata, dict) else fallback
        found.append(NotificationEvent(payload=value, metadata=meta))

    def visit(value: Any, inherited: dict | None) -> None:
        if not isinstance(value, (dict, list)) or id(value) in seen:
            return
        seen.add(id(value))

        if isinstance(value, list):
            for entry in value:
                visit(entry, inherited)
            return

        metadata = value.get("metadata") if isinstance(value.get("metadata"), dict) else inherited

        if "notification" in value:
            push(value["notification"], value.get("metadata"), metadata)

        if isinstance(value.get("notifications"), list):
            for entry in value["notifications"]:
                if isinstance(entry, dict) and "payload" in entry:
                    push(entry["payload"], entry.get("metadata"), metadata)
                else:
                    push(entry, None, metadata)

        kind = value.get("type")
        if isinstance(kind, str) and "notification" in kind.lower():
            rest = {k: v for k, v in value.items() if k != "metadata"}
            push(rest, value.get("metadata"), metadata)

        for key, child in value.items():
            if key in _SKIPPED_KEYS:
                continue
            visit(child, metadata)

    visit(payload, None)
    return found
