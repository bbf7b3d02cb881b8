#!/usr/bin/env python3
# BT-Gateway Backend Engine
# Orchestrates the BlueZ engine, Bluetooth worker, REST API and WebSocket push

import threading
import signal
import sys
import time
from btgateway.logger import logger

# Config
from btgateway.config_manager import load_config

# Engines
from btgateway.engine.bluetooth_dbus import BluetoothDBus
from btgateway.engine.rfcomm import RfcommConnector

# Modules
from btgateway.modules.bluetooth.module import BluetoothModule

# Workers
from btgateway.workers.bluetooth_worker import BluetoothWorker

# API
from btgateway.api.server import start_api

# WebSocket
from btgateway.api.websocket import WebSocketServer
from btgateway.api.bridge import WebSocketBridge


class BackendEngine:
    def __init__(self):
        logger.log("INFO", "Initializing backend engine...")

        # --------------------------------------------------------
        # LOAD CONFIG
        # --------------------------------------------------------
        self.config = load_config()
        try:
            logger.set_level(self.config.get("log_level", "INFO"))
        except ValueError as e:
            logger.log("WARN", f"{e}, keeping {logger.level}")
        bt_cfg = self.config["bluetooth"]

        # --------------------------------------------------------
        # INIT MODULE + WORKER
        # --------------------------------------------------------
        self.bluetooth = BluetoothModule()
        self.worker = BluetoothWorker(
            self.bluetooth,
            BluetoothDBus(),
            RfcommConnector.from_config(bt_cfg),
            bt_cfg
        )

        self.ws_server = None
        self.bridge = None
        self.threads = []
        self._stopped = threading.Event()

        logger.log("INFO", "Backend engine initialized.")

    # ------------------------------------------------------------
    def start(self):
        logger.log("INFO", "Starting Bluetooth worker...")

        t = threading.Thread(target=self.worker.start, daemon=True)
        t.start()
        self.threads.append(t)

        # --------------------------------------------------------
        # START REST API SERVER
        # --------------------------------------------------------
        api_cfg = self.config["api"]
        self.threads.append(start_api(
            self.bluetooth,
            self.worker,
            host=api_cfg["host"],
            port=api_cfg["port"],
            api_token=api_cfg["token"]
        ))

        # --------------------------------------------------------
        # START WEBSOCKET SERVER
        # --------------------------------------------------------
        ws_cfg = self.config["websocket"]
        self.ws_server = WebSocketServer(
            host=ws_cfg["host"],
            port=ws_cfg["port"],
            snapshot=self.bluetooth.read_status
        )
        self.bridge = WebSocketBridge(self.ws_server)
        ws_thread = threading.Thread(target=self.ws_server.start, daemon=True)
        ws_thread.start()
        self.threads.append(ws_thread)

        # --------------------------------------------------------
        # SIGNAL HANDLING
        # --------------------------------------------------------
        signal.signal(signal.SIGINT, self._shutdown)
        signal.signal(signal.SIGTERM, self._shutdown)

        # Keep engine alive
        while not self._stopped.is_set():
            time.sleep(1)

        logger.log("INFO", "Backend stopped cleanly.")

    # ------------------------------------------------------------
    def _shutdown(self, signum, frame):
        logger.log("WARN", f"Shutting down backend engine (signal={signum})")

        self.worker.stop()
        if self.bridge:
            self.bridge.close()
        if self.ws_server:
            self.ws_server.stop()

        self._stopped.set()


# ------------------------------------------------------------
# ENTRY POINT
# ------------------------------------------------------------
def main():
    engine = BackendEngine()
    engine.start()
    return 0


if __name__ == "__main__":
    sys.exit(main())
