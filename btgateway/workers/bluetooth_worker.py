#!/usr/bin/env python3
# BT-Gateway Bluetooth Worker
# Drives scanning, pairing and RFCOMM connections from user commands and BlueZ events

import threading

from btgateway.logger import logger
from btgateway.ipc.router import router
from btgateway.errors import BluetoothUnavailable, ConnectionFailed, UnknownDevice
from btgateway.modules.bluetooth.module import (
    BOND_NONE,
    BOND_BONDING,
    BOND_BONDED,
    display_name
)


def _spawn_thread(target, *args):
    t = threading.Thread(target=target, args=args, daemon=True)
    t.start()
    return t


class BluetoothWorker:
    """
    Controller for the single device list:
      - scan toggle with an automatic stop after scan_timeout
      - discovery events → device list and status line
      - connect: cancel discovery, pair if needed, then connect on a worker thread
    """

    def __init__(self, bt_module, engine, connector, bt_config,
                 timer_factory=threading.Timer, spawn=_spawn_thread):
        self.bt = bt_module
        self.engine = engine
        self.connector = connector
        self.scan_timeout = bt_config["scan_timeout"]
        self.cancel_delay = bt_config["discovery_cancel_delay"]
        self.auto_power = bt_config["auto_power"]

        self._timer_factory = timer_factory
        self._spawn = spawn
        self._lock = threading.RLock()
        self._scan_timer = None
        self._pending = set()
        self._pairing_watchers = {}
        self.connection = None
        self.running = False

        router.subscribe("bt_discovery_started", self._on_discovery_started)
        router.subscribe("bt_discovery_finished", self._on_discovery_finished)
        router.subscribe("bt_device_found", self._on_device_found)

    # ------------------------------------------------------------
    def start(self):
        """Report adapter state, then block in the BlueZ signal loop."""
        self.running = True
        available = self.engine.available
        self.bt.update_adapter(available=available, powered=self.engine.get_power())

        if not available:
            self._notify("Bluetooth not supported", "error")
            return

        logger.log("INFO", "BluetoothWorker started.")
        self.engine.run()

    # ------------------------------------------------------------
    def stop(self):
        self.running = False
        with self._lock:
            self._cancel_scan_timer()
            for timer in list(self._pending):
                timer.cancel()
            self._pending.clear()

            for watcher in list(self._pairing_watchers.values()):
                router.unsubscribe("bt_bond_state_changed", watcher)
            self._pairing_watchers.clear()

        self.stop_scan()
        self.disconnect()

        router.unsubscribe("bt_discovery_started", self._on_discovery_started)
        router.unsubscribe("bt_discovery_finished", self._on_discovery_finished)
        router.unsubscribe("bt_device_found", self._on_device_found)
        self.engine.stop()
        logger.log("INFO", "BluetoothWorker stopped.")

    # ------------------------------------------------------------
    # SCANNING
    # ------------------------------------------------------------
    def toggle_scan(self):
        """Stop a running scan, otherwise start one. Returns the scanning flag."""
        with self._lock:
            if self.bt.scanning:
                self.stop_scan()
                return False

            self._require_adapter()

            if not self.engine.get_power():
                if not (self.auto_power and self.engine.set_power(True)):
                    self._notify("Bluetooth must be enabled to scan for devices", "error")
                    return False
                logger.log("INFO", "Bluetooth adapter powered on")
                self.bt.update_adapter(powered=True)

            self.start_scan()
            return self.bt.scanning

    def start_scan(self):
        with self._lock:
            self._require_adapter()
            self.bt.set_status("Starting scan...")
            self.bt.set_scanning(True)

            if not self.engine.start_discovery():
                self._notify("Failed to start discovery", "error")
                self.bt.set_scanning(False)

            self._cancel_scan_timer()
            self._scan_timer = self._timer_factory(self.scan_timeout, self.stop_scan)
            self._scan_timer.daemon = True
            self._scan_timer.start()

        self._publish_status()

    def stop_scan(self):
        with self._lock:
            if not self.bt.scanning:
                return
            if self.engine.is_discovering():
                self.engine.cancel_discovery()
            self.bt.set_scanning(False)
            self._cancel_scan_timer()

        logger.log("INFO", "Scan stopped")
        self._publish_status()

    def _cancel_scan_timer(self):
        if self._scan_timer is not None:
            self._scan_timer.cancel()
            self._scan_timer = None

    # ------------------------------------------------------------
    # DISCOVERY EVENTS
    # ------------------------------------------------------------
    def _on_discovery_started(self, _data):
        with self._lock:
            self.bt.set_status("Scanning for devices...")
            self.bt.clear_devices()
        self._publish_status()

    def _on_device_found(self, device):
        if not device or not device.get("mac"):
            return
        if self.bt.add_device(device):
            logger.log("INFO", f"Discovered {display_name(device)} [{device['mac']}]")
        self._publish_status()

    def _on_discovery_finished(self, _data):
        with self._lock:
            count = len(self.bt.devices)
            self.bt.set_status(f"Scan completed. Found {count} devices.")
            self.bt.set_scanning(False)
        self._publish_status()

    # ------------------------------------------------------------
    # CONNECTING
    # ------------------------------------------------------------
    def connect(self, mac):
        """Start connecting to a listed (or BlueZ-known) device."""
        mac = mac.upper()
        self._require_adapter()

        device = self.bt.get_device(mac) or self.engine.get_device(mac)
        if device is None:
            raise UnknownDevice(mac)

        if self.engine.is_discovering():
            self.engine.cancel_discovery()
            logger.log("DEBUG", "Discovery cancelled before connection")
            self._schedule(self.cancel_delay, self._proceed_with_connection, device)
        else:
            self._proceed_with_connection(device)
        return device

    def _schedule(self, delay, fn, *args):
        def run():
            with self._lock:
                self._pending.discard(timer)
            fn(*args)

        timer = self._timer_factory(delay, run)
        timer.daemon = True
        with self._lock:
            self._pending.add(timer)
        timer.start()
        return timer

    def _proceed_with_connection(self, device):
        mac = device["mac"]
        current = self.engine.get_device(mac) or device
        name = display_name(current)
        bond_state = current.get("bond_state", BOND_NONE)

        if bond_state == BOND_BONDED:
            logger.log("DEBUG", f"Device already bonded. Proceeding with connection to {name}")
            self._attempt_connection(current)

        elif bond_state == BOND_BONDING:
            self._notify("Device is currently pairing. Please wait...")

        else:
            logger.log("DEBUG", f"Device not bonded. Initiating pairing for {name}")
            self._watch_pairing(current)
            if self.engine.pair(mac):
                self._notify(f"Pairing initiated with {name}")
            else:
                self._unwatch_pairing(mac)
                self._notify(f"Failed to initiate pairing with {name}", "error")

    # ------------------------------------------------------------
    # PAIRING WATCHER
    # ------------------------------------------------------------
    def _watch_pairing(self, device):
        mac = device["mac"]
        name = display_name(device)

        def on_bond_state(data):
            if not data or data.get("mac") != mac:
                return
            state = data.get("bond_state")
            logger.log("DEBUG", f"Bond state changed: {state} for {name}")

            if state == BOND_BONDED:
                self._unwatch_pairing(mac)
                self.bt.update_device(mac, bond_state=BOND_BONDED)
                self._notify(f"Paired with {name}")
                self._attempt_connection(dict(device, bond_state=BOND_BONDED))
            elif state == BOND_NONE:
                self._unwatch_pairing(mac)
                self._notify(f"Pairing failed with {name}", "error")

        with self._lock:
            old = self._pairing_watchers.pop(mac, None)
            if old is not None:
                router.unsubscribe("bt_bond_state_changed", old)
            self._pairing_watchers[mac] = on_bond_state
        router.subscribe("bt_bond_state_changed", on_bond_state)

    def _unwatch_pairing(self, mac):
        with self._lock:
            watcher = self._pairing_watchers.pop(mac, None)
        if watcher is not None:
            router.unsubscribe("bt_bond_state_changed", watcher)

    # ------------------------------------------------------------
    # CONNECTION THREAD
    # ------------------------------------------------------------
    def _attempt_connection(self, device):
        self._spawn(self._connect_worker, device)

    def _connect_worker(self, device):
        mac = device["mac"]
        name = display_name(device)
        router.publish("bt_connection", {"state": "connecting", "mac": mac, "name": name})

        try:
            connection = self.connector.connect(mac, name)
        except ConnectionFailed as e:
            logger.log("WARN", f"{e} ({len(e.attempts)} attempts)")
            self._notify(f"All connection attempts failed for {name}", "error")
            router.publish("bt_connection", {"state": "failed", "mac": mac, "name": name})
            return
        except Exception as e:
            logger.log("ERROR", f"Connection error for {name}: {e}")
            self._notify(f"Connection failed: {e}", "error")
            router.publish("bt_connection", {"state": "failed", "mac": mac, "name": name})
            return

        try:
            with self._lock:
                previous, self.connection = self.connection, connection
            if previous is not None and previous is not connection:
                previous.close()

            info = dict(connection.describe(), name=name)
            self.bt.set_connected(info)
            self.bt.set_status(f"Connected to: {name}")
            self._notify(f"Connected to {name}")
            router.publish("bt_connection", dict(info, state="connected"))
        except Exception as e:
            logger.log("ERROR", f"Connection error for {name}: {e}")
            self._notify(f"Connection failed: {e}", "error")
            with self._lock:
                if self.connection is connection:
                    self.connection = None
            connection.close()
            return

        self._publish_status()

    def disconnect(self):
        """Close the held connection. Returns False when nothing was connected."""
        with self._lock:
            connection, self.connection = self.connection, None
        if connection is None:
            return False

        connection.close()
        self.bt.set_connected(None)
        self.bt.set_status("Disconnected")
        logger.log("INFO", f"Disconnected from {connection.mac}")
        router.publish("bt_connection", {"state": "disconnected", "mac": connection.mac})
        self._publish_status()
        return True

    # ------------------------------------------------------------
    # HELPERS
    # ------------------------------------------------------------
    def _require_adapter(self):
        if not self.engine.available:
            raise BluetoothUnavailable()

    def _notify(self, message, level="info"):
        logger.log("ERROR" if level == "error" else "INFO", message)
        entry = self.bt.notify(message, level)
        router.publish("bt_notification", dict(entry))

    def _publish_status(self):
        router.publish("bt_update", self.bt.read_status())
