"""
Flow notifications.

After a bed or admission command commits, a logical event
``{scope, name, kind, payload}`` is pushed onto the Channels layer for
whoever listens: ward and department boards, and the notification
collaborator that turns events into in-app or push messages.  Delivery
is not this module's concern; an event lost because the layer is down
never undoes the committed change.
"""
from __future__ import annotations

from typing import Any, Optional

import structlog
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction
from django.utils import timezone
from django.utils.text import slugify

logger = structlog.get_logger(__name__)

SCOPE_WARD = 'ward'
SCOPE_DEPARTMENT = 'department'
SCOPES = (SCOPE_WARD, SCOPE_DEPARTMENT)

UPDATES_GROUP = 'flow.updates'


def group_name(scope: str, name: str) -> str:
    # Channels group names: ASCII alphanumerics, hyphens, periods, < 100 chars
    return f"flow.{scope}.{slugify(name) or 'unnamed'}"[:99]


def notify(scope: str, name: str, kind: str, payload: Optional[dict[str, Any]] = None) -> None:
    """Queue an event for delivery once the current transaction commits."""
    event = {
        'scope': scope,
        'name': name,
        'kind': kind,
        'payload': payload or {},
    }
    transaction.on_commit(lambda: publish(event), robust=True)


def publish(event: dict[str, Any]) -> None:
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    message = {'type': 'flow.event', 'ts': timezone.now().isoformat(), **event}
    send = async_to_sync(channel_layer.group_send)
    send(group_name(event['scope'], event['name']), message)
    send(UPDATES_GROUP, message)
    logger.info('flow_event_published', scope=event['scope'], name=event['name'], kind=event['kind'])
