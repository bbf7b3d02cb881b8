# BT-Gateway IPC Router
# Central messaging hub between the BlueZ engine, the controller and UI clients

import threading

from btgateway.logger import logger


class IPCRouter:
    def __init__(self):
        self.subscribers = {}
        self._lock = threading.Lock()

    def subscribe(self, event_name, callback):
        with self._lock:
            if event_name not in self.subscribers:
                self.subscribers[event_name] = []
            self.subscribers[event_name].append(callback)

    def unsubscribe(self, event_name, callback):
        with self._lock:
            callbacks = self.subscribers.get(event_name, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self.subscribers.pop(event_name, None)

    def clear(self):
        with self._lock:
            self.subscribers = {}

    def publish(self, event_name, data=None):
        # Snapshot so callbacks may unsubscribe themselves
        with self._lock:
            exact = list(self.subscribers.get(event_name, []))
            wildcard = list(self.subscribers.get("*", [])) if event_name != "*" else []

        for callback in exact:
            try:
                callback(data)
            except Exception as e:
                logger.log("ERROR", f"IPC callback error ({event_name}): {e}")

        for callback in wildcard:
            try:
                callback(event_name, data)
            except Exception as e:
                logger.log("ERROR", f"IPC wildcard callback error ({event_name}): {e}")

# Global instance
router = IPCRouter()
