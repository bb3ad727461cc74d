"""
Event broadcaster for the dashboard WebSocket channel.

Simulations publish events onto a queue; a single pump task drains it in
order and fans each event out to every open connection.
"""
import asyncio
from datetime import datetime
from typing import Optional, Set

from fastapi import WebSocket

from ..logger import Logger

SUBSCRIPTION_TYPES = ("subscribe_training", "subscribe_logs")

class EventBroadcaster:
    def __init__(self):
        self.active_connections: Set[WebSocket] = set()
        self.queue: asyncio.Queue = asyncio.Queue()
        self._pump: Optional[asyncio.Task] = None

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.add(websocket)
        Logger.custom(f"Client connected ({len(self.active_connections)} open)", "WEBSOCKET", "cyan")

        await self.send_personal_message(
            {
                "type": "connected",
                "message": "Connected to training updates",
                "timestamp": datetime.utcnow().isoformat(),
            },
            websocket,
        )

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.discard(websocket)
            Logger.custom(f"Client disconnected ({len(self.active_connections)} open)", "WEBSOCKET", "cyan")

    async def send_personal_message(self, message: dict, websocket: WebSocket):
        try:
            await websocket.send_json(message)
        except Exception as e:
            Logger.error(f"Error sending to client: {e}")
            self.disconnect(websocket)

    async def handle_client_message(self, message: dict, websocket: WebSocket):
        # Subscriptions are acknowledged only; every client receives every event
        if message.get("type") in SUBSCRIPTION_TYPES:
            await self.send_personal_message(
                {"type": "subscribed", "channel": message["type"]},
                websocket,
            )

    def publish(self, event: dict):
        self.queue.put_nowait(event)

    async def send_all(self, event: dict):
        disconnected = set()

        for connection in list(self.active_connections):
            try:
                await connection.send_json(event)
            except Exception as e:
                Logger.custom(f"Dropping connection after failed send: {e}", "BROADCASTER", "orange")
                disconnected.add(connection)

        for connection in disconnected:
            self.disconnect(connection)

    async def run(self):
        Logger.custom("Event broadcaster started", "BROADCASTER", "blue")
        while True:
            event = await self.queue.get()
            try:
                await self.send_all(event)
            finally:
                self.queue.task_done()

    def start(self):
        if self._pump is None or self._pump.done():
            self._pump = asyncio.create_task(self.run())
        return self._pump

    async def stop(self):
        if self._pump is None:
            return
        self._pump.cancel()
        try:
            await self._pump
        except asyncio.CancelledError:
            pass
        self._pump = None

    def get_connection_count(self) -> int:
        return len(self.active_connections)
