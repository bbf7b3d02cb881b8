import asyncio

from btgateway.ipc.router import router
from btgateway.logger import logger


class WebSocketBridge:
    """
    Bridges IPC events to WebSocket clients.
    """

    def __init__(self, ws_server):
        self.ws = ws_server
        # Subscribe to all backend events
        router.subscribe("*", self.forward_any_event)

    # ------------------------------------------------------------
    def forward_any_event(self, event_name, data):
        """
        Called whenever ANY router.publish(event, data) is used.
        Forwards the event to all connected WebSocket clients.
        """
        if not event_name.startswith("bt_"):
            return

        # Check if WebSocket loop is ready
        if not self.ws.loop or not self.ws.loop.is_running():
            return

        try:
            asyncio.run_coroutine_threadsafe(
                self.ws.broadcast(event_name, data if data is not None else {}),
                self.ws.loop
            )
        except RuntimeError as e:
            logger.log("WARN", f"WebSocket broadcast failed: {e}")

    # ------------------------------------------------------------
    def close(self):
        router.unsubscribe("*", self.forward_any_event)
