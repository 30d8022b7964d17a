import json

from channels.generic.websocket import AsyncWebsocketConsumer

from flow.services.notifications import SCOPES, UPDATES_GROUP, group_name


class FlowUpdatesConsumer(AsyncWebsocketConsumer):
    """Push flow events to a ward or department board.

    ``ws/flow/`` follows every event; ``ws/flow/<scope>/<name>/`` only
    the ward or department named.
    """

    async def connect(self):
        user = self.scope.get("user")
        if user is None or not user.is_authenticated:
            await self.close(code=4401)
            return
        kwargs = self.scope["url_route"]["kwargs"]
        scope = kwargs.get("scope")
        if scope is None:
            self.group = UPDATES_GROUP
        elif scope in SCOPES:
            self.group = group_name(scope, kwargs["name"])
        else:
            await self.close(code=4404)
            return
        await self.channel_layer.group_add(self.group, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "group": self.group}))

    async def disconnect(self, close_code):
        group = getattr(self, "group", None)
        if group:
            await self.channel_layer.group_discard(group, self.channel_name)

    async def flow_event(self, event):
        # event: {"type": "flow.event", "ts": "...", "scope", "name", "kind", "payload"}
        await self.send(json.dumps(event))

    async def broadcast_refresh(self, event):
        await self.send(json.dumps(event))
