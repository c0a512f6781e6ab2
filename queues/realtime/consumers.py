"""
WebSocket consumers for live queue views.

``QueueConsumer`` serves one daily queue (physician console, reception
desk); ``ActiveQueuesConsumer`` serves the waiting-room board.  Both send a
full snapshot when the socket opens and whenever the client sends
``{"type": "resync"}``, then relay ``queue.event`` messages from the
channel layer.  Clients compare the ``version`` of each event with the last
one they saw and ask for a resync on a gap.
"""
import json

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer
from django.contrib.auth.models import AnonymousUser

from queues import snapshots
from queues.exceptions import QueueNotFound
from queues.services.notifier import ACTIVE_QUEUES_GROUP, queue_group
from queues.services.registry import get_queue



async def _ws_error(ws, code: int, message: str, *, close: bool = False):
    """Error frame sent to the client; 4xxx for client errors."""
    payload = {"type": "error", "code": code, "message": message}
    try:
        await ws.send(json.dumps(payload))
    finally:
        if close:
            await ws.close(code=code)


def _load_queue_snapshot(queue_id):
    return snapshots.queue_snapshot(get_queue(queue_id))


class _SnapshotConsumer(AsyncWebsocketConsumer):
    group_name = None

    async def connect(self):
        user = self.scope.get("user") or AnonymousUser()
        if not user.is_authenticated:
            await self.close(code=4003)
            return
        if not await self.resolve_group():
            return
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()
        await self.send_snapshot()

    async def disconnect(self, close_code):
        if self.group_name:
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def receive(self, text_data=None, bytes_data=None):
        if not text_data:
            return
        try:
            data = json.loads(text_data)
        except ValueError:
            await _ws_error(self, 4000, "invalid_json")
            return
        if not isinstance(data, dict):
            await _ws_error(self, 4001, "invalid_payload")
            return
        if data.get("type") == "resync":
            await self.send_snapshot()
        elif data.get("type") == "ping":
            await self.send(json.dumps({"type": "pong"}))
        else:
            await _ws_error(self, 4002, "unsupported_type")

    async def queue_event(self, event):
        # event: {"type": "queue.event", "event": "entry.called", "version": int, ...}
        await self.send(json.dumps(event))

    async def resolve_group(self) -> bool:
        raise NotImplementedError

    async def send_snapshot(self):
        raise NotImplementedError


class QueueConsumer(_SnapshotConsumer):
    async def resolve_group(self):
        self.queue_id = self.scope["url_route"]["kwargs"]["queue_id"]
        try:
            await database_sync_to_async(get_queue)(self.queue_id)
        except QueueNotFound:
            await self.close(code=4004)
            return False
        self.group_name = queue_group(self.queue_id)
        return True

    async def send_snapshot(self):
        try:
            data = await database_sync_to_async(_load_queue_snapshot)(self.queue_id)
        except QueueNotFound:
            await _ws_error(self, 4004, "queue_not_found", close=True)
            return
        await self.send(json.dumps({"type": "snapshot", "data": data}))


class ActiveQueuesConsumer(_SnapshotConsumer):
    async def resolve_group(self):
        self.group_name = ACTIVE_QUEUES_GROUP
        return True

    async def send_snapshot(self):
        data = await database_sync_to_async(snapshots.active_board)()
        await self.send(json.dumps({"type": "snapshot", "data": data}))
