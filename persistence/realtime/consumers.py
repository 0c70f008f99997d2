import json

from channels.generic.websocket import AsyncWebsocketConsumer
from channels.layers import get_channel_layer

SYNC_GROUP = "sync"


class SyncUpdatesConsumer(AsyncWebsocketConsumer):
    GROUP = SYNC_GROUP

    async def connect(self):
        await self.channel_layer.group_add(self.GROUP, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "message": "connected"}))

    async def disconnect(self, close_code):
        await self.channel_layer.group_discard(self.GROUP, self.channel_name)

    async def sync_complete(self, event):
        # event: {"type": "sync.complete", "syncType": "patient", "id": "...", "payload": {...}}
        await self.send(json.dumps(event, ensure_ascii=False))


async def broadcast_sync_complete(event) -> None:
    """Push a SyncComplete event to every connected UI."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    await channel_layer.group_send(
        SYNC_GROUP,
        {"type": "sync.complete", "syncType": event.type, "id": event.id, "payload": event.payload},
    )
