#!/usr/bin/env python3
# BT-Gateway WebSocket Server
# Pushes Bluetooth events (device list, connection state, notifications) to UI clients

import asyncio
import json
import websockets
from btgateway.logger import logger


class WebSocketServer:
    def __init__(self, host="0.0.0.0", port=9000, snapshot=None):
        self.host = host
        self.port = port
        self.snapshot = snapshot
        self.clients = set()
        self.loop = None
        self._stop = None

    # ------------------------------------------------------------
    async def handler(self, websocket):
        """Handle new WebSocket client connection"""
        self.clients.add(websocket)
        logger.log("INFO", f"WebSocket client connected. {len(self.clients)} total")

        try:
            # new clients get the current state straight away
            if self.snapshot is not None:
                await websocket.send(self._encode("bt_update", self.snapshot()))

            async for _message in websocket:
                # clients only listen; commands go through the REST API
                pass
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self.clients.discard(websocket)
            logger.log("INFO", f"WebSocket client disconnected. {len(self.clients)} remaining")

    # ------------------------------------------------------------
    @staticmethod
    def _encode(event, payload):
        return json.dumps({
            "event": event,
            "payload": payload
        })

    async def broadcast(self, event, payload):
        """
        Broadcast message to all connected clients.
        """
        if not self.clients:
            return

        msg = self._encode(event, payload)

        dead = set()
        for ws in list(self.clients):
            try:
                await ws.send(msg)
            except websockets.exceptions.ConnectionClosed:
                dead.add(ws)

        self.clients -= dead

    # ------------------------------------------------------------
    def start(self):
        """
        Run WebSocket server in its own thread using a new asyncio loop.
        """
        logger.log("INFO", f"Starting WebSocket server on ws://{self.host}:{self.port}")

        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)

        try:
            self.loop.run_until_complete(self._run_server())
        except OSError as e:
            logger.log("ERROR", f"WebSocket server failed: {e}")
        finally:
            self.loop.close()

    # ------------------------------------------------------------
    async def _run_server(self):
        self._stop = asyncio.Future()
        async with websockets.serve(self.handler, self.host, self.port):
            logger.log("INFO", f"WebSocket server running on port {self.port}")
            await self._stop

    # ------------------------------------------------------------
    def stop(self):
        """Stop the WebSocket server"""
        if self.loop and self.loop.is_running() and self._stop is not None:
            self.loop.call_soon_threadsafe(self._stop.set_result, None)
