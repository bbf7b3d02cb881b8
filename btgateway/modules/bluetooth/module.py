#!/usr/bin/env python3
# BT-Gateway Bluetooth Module
# Stores adapter state, discovered devices, the connected device and notifications

import threading
import time

BOND_NONE = "none"
BOND_BONDING = "bonding"
BOND_BONDED = "bonded"

MAX_NOTIFICATIONS = 50
UNKNOWN_NAME = "Unknown Device"


def display_name(device):
    return device.get("name") or UNKNOWN_NAME


def device_info(props, bonding=False):
    """Turn BlueZ Device1 properties into the dict shared with the controller and API."""
    paired = bool(props.get("Paired", False))
    if paired:
        bond_state = BOND_BONDED
    elif bonding:
        bond_state = BOND_BONDING
    else:
        bond_state = BOND_NONE

    name = props.get("Name") or props.get("Alias")
    return {
        "mac": str(props.get("Address", "")).upper(),
        "name": str(name) if name else None,
        "bond_state": bond_state,
        "rssi": int(props["RSSI"]) if "RSSI" in props else None,
        "device_class": int(props["Class"]) if "Class" in props else None,
        "connected": bool(props.get("Connected", False))
    }


class BluetoothModule:
    def __init__(self):
        self._lock = threading.RLock()

        # Adapter state
        self.available = False
        self.powered = False
        self.scanning = False
        self.status = "Idle"
        self.timestamp = 0

        # Discovered devices in order of first sighting
        # Example entry:
        # { mac, name, bond_state, rssi, device_class, connected }
        self.devices = []

        # Connected device: { mac, name, tier, channel } or None
        self.connected = None

        self.notifications = []

    # ------------------------------------------------------------
    def read_status(self):
        """Return a JSON-friendly snapshot for API/UI."""
        with self._lock:
            return {
                "available": self.available,
                "powered": self.powered,
                "scanning": self.scanning,
                "status": self.status,
                "devices": [dict(d) for d in self.devices],
                "connected": dict(self.connected) if self.connected else None,
                "notifications": list(self.notifications),
                "timestamp": self.timestamp
            }

    def list_devices(self):
        with self._lock:
            return [dict(d) for d in self.devices]

    # ------------------------------------------------------------
    def update_adapter(self, available=None, powered=None):
        """Update adapter-level info."""
        with self._lock:
            if available is not None:
                self.available = available
            if powered is not None:
                self.powered = powered
            self._touch()

    def set_scanning(self, scanning):
        with self._lock:
            self.scanning = scanning
            self._touch()

    def set_status(self, text):
        with self._lock:
            self.status = text
            self._touch()

    # ------------------------------------------------------------
    def add_device(self, device):
        """
        Add a device unless its MAC is already listed.
        Returns True when the device is new; a repeat sighting
        only refreshes the known fields.
        """
        mac = device["mac"].upper()
        with self._lock:
            for existing in self.devices:
                if existing["mac"] == mac:
                    for key, value in device.items():
                        if value is not None and key != "mac":
                            existing[key] = value
                    self._touch()
                    return False

            entry = dict(device)
            entry["mac"] = mac
            self.devices.append(entry)
            self._touch()
            return True

    def get_device(self, mac):
        mac = mac.upper()
        with self._lock:
            for device in self.devices:
                if device["mac"] == mac:
                    return dict(device)
        return None

    def update_device(self, mac, **fields):
        mac = mac.upper()
        with self._lock:
            for device in self.devices:
                if device["mac"] == mac:
                    device.update(fields)
                    self._touch()
                    return True
        return False

    def clear_devices(self):
        with self._lock:
            self.devices = []
            self._touch()

    # ------------------------------------------------------------
    def set_connected(self, info):
        with self._lock:
            previous = self.connected["mac"] if self.connected else None
            self.connected = dict(info) if info else None
            for device in self.devices:
                if device["mac"] == previous:
                    device["connected"] = False
                if info and device["mac"] == info["mac"]:
                    device["connected"] = True
            self._touch()

    def notify(self, message, level="info"):
        entry = {"level": level, "message": message, "timestamp": int(time.time())}
        with self._lock:
            self.notifications.append(entry)
            if len(self.notifications) > MAX_NOTIFICATIONS:
                self.notifications.pop(0)
        return entry

    def _touch(self):
        self.timestamp = int(time.time())
