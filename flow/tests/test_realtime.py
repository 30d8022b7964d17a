import json

import pytest
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser
from django.urls import path

from flow.models import User
from flow.realtime.consumers import FlowUpdatesConsumer
from flow.services.notifications import UPDATES_GROUP, group_name

# channels' consumer dispatch calls close_old_connections(), which touches the DB
pytestmark = pytest.mark.django_db

application = URLRouter([
    path("ws/flow/", FlowUpdatesConsumer.as_asgi()),
    path("ws/flow/<str:scope>/<str:name>/", FlowUpdatesConsumer.as_asgi()),
])


def _communicator(url, user):
    communicator = WebsocketCommunicator(application, url)
    communicator.scope["user"] = user
    return communicator


def test_anonymous_socket_is_closed():
    async def scenario():
        communicator = _communicator("/ws/flow/", AnonymousUser())
        connected, code = await communicator.connect()
        return connected, code

    connected, code = async_to_sync(scenario)()
    assert not connected
    assert code == 4401


def test_unknown_scope_is_closed():
    async def scenario():
        communicator = _communicator("/ws/flow/floor/3/", User(username="n1", role=User.ROLE_NURSE))
        return await communicator.connect()

    connected, code = async_to_sync(scenario)()
    assert not connected
    assert code == 4404


def test_ward_board_receives_its_events():
    async def scenario():
        communicator = _communicator("/ws/flow/ward/ICU/", User(username="n1", role=User.ROLE_NURSE))
        connected, _ = await communicator.connect()
        assert connected
        welcome = json.loads(await communicator.receive_from())
        await get_channel_layer().group_send(group_name("ward", "ICU"), {
            "type": "flow.event", "scope": "ward", "name": "ICU", "kind": "bed.assigned", "payload": {"bedId": "b1"},
        })
        event = json.loads(await communicator.receive_from())
        await communicator.disconnect()
        return welcome, event

    welcome, event = async_to_sync(scenario)()
    assert welcome == {"type": "welcome", "group": "flow.ward.icu"}
    assert event["kind"] == "bed.assigned"
    assert event["payload"] == {"bedId": "b1"}


def test_global_feed_receives_refresh_broadcast():
    async def scenario():
        communicator = _communicator("/ws/flow/", User(username="a1", role=User.ROLE_ADMIN))
        await communicator.connect()
        await communicator.receive_from()
        await get_channel_layer().group_send(UPDATES_GROUP, {"type": "broadcast.refresh", "keys": ["k"]})
        message = json.loads(await communicator.receive_from())
        await communicator.disconnect()
        return message

    message = async_to_sync(scenario)()
    assert message["type"] == "broadcast.refresh"
    assert message["keys"] == ["k"]
