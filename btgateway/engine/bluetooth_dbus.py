#!/usr/bin/env python3
# Bluetooth BlueZ DBus Engine for BT-Gateway
# Provides adapter power, Classic discovery, pairing and discovery/bond signals

import dbus
import dbus.mainloop.glib
from gi.repository import GLib

from btgateway.logger import logger
from btgateway.ipc.router import router
from btgateway.modules.bluetooth.module import BOND_NONE, BOND_BONDING, BOND_BONDED, device_info


class BluetoothDBus:
    """
    Wrapper for BlueZ over D-Bus.
    Supports:
        - Power ON/OFF
        - Classic (BR/EDR) discovery start / cancel
        - Device lookup by MAC
        - Asynchronous pairing
        - Discovery, device and bond signals published on the IPC router
    """

    BLUEZ_SERVICE = "org.bluez"
    ADAPTER_IFACE = "org.bluez.Adapter1"
    DEVICE_IFACE = "org.bluez.Device1"
    PROPS_IFACE = "org.freedesktop.DBus.Properties"
    OM_IFACE = "org.freedesktop.DBus.ObjectManager"

    def __init__(self, bus=None):
        if bus is None:
            dbus.mainloop.glib.threads_init()
            dbus.mainloop.glib.DBusGMainLoop(set_as_default=True)
            bus = dbus.SystemBus()
        self.bus = bus
        self.loop = None
        self._bonding = set()
        self._watching = False

        self.adapter = self._find_adapter()

        if not self.adapter:
            logger.log("ERROR", "No Bluetooth adapter found via DBus")

    @property
    def available(self):
        return self.adapter is not None

    # ------------------------------------------------------------
    def _managed_objects(self):
        manager = dbus.Interface(
            self.bus.get_object(self.BLUEZ_SERVICE, "/"),
            self.OM_IFACE
        )
        return manager.GetManagedObjects()

    def _find_adapter(self):
        """Get the first available adapter."""
        try:
            for path, interfaces in self._managed_objects().items():
                if self.ADAPTER_IFACE in interfaces:
                    return path
        except dbus.exceptions.DBusException as e:
            logger.log("ERROR", f"DBus adapter scan failed: {e}")
        return None

    def _adapter_props(self):
        adapter_obj = self.bus.get_object(self.BLUEZ_SERVICE, self.adapter)
        return dbus.Interface(adapter_obj, self.PROPS_IFACE)

    def _adapter_iface(self):
        adapter_obj = self.bus.get_object(self.BLUEZ_SERVICE, self.adapter)
        return dbus.Interface(adapter_obj, self.ADAPTER_IFACE)

    # ------------------------------------------------------------
    # POWER
    # ------------------------------------------------------------
    def set_power(self, state: bool):
        if not self.adapter:
            return False
        try:
            self._adapter_props().Set(self.ADAPTER_IFACE, "Powered", dbus.Boolean(state))
            return True
        except dbus.exceptions.DBusException as e:
            logger.log("ERROR", f"Failed to set BT power: {e}")
            return False

    def get_power(self):
        if not self.adapter:
            return False
        try:
            return bool(self._adapter_props().Get(self.ADAPTER_IFACE, "Powered"))
        except dbus.exceptions.DBusException as e:
            logger.log("WARN", f"Failed to read BT power: {e}")
            return False

    # ------------------------------------------------------------
    # DISCOVERY
    # ------------------------------------------------------------
    def is_discovering(self):
        if not self.adapter:
            return False
        try:
            return bool(self._adapter_props().Get(self.ADAPTER_IFACE, "Discovering"))
        except dbus.exceptions.DBusException as e:
            logger.log("WARN", f"Failed to read discovery state: {e}")
            return False

    def start_discovery(self):
        """Start Classic (BR/EDR) discovery."""
        if not self.adapter:
            return False
        adapter = self._adapter_iface()
        try:
            adapter.SetDiscoveryFilter({"Transport": dbus.String("bredr")})
        except dbus.exceptions.DBusException as e:
            logger.log("DEBUG", f"Discovery filter not applied: {e}")
        try:
            adapter.StartDiscovery()
            return True
        except dbus.exceptions.DBusException as e:
            logger.log("ERROR", f"Failed to start BT discovery: {e}")
            return False

    def cancel_discovery(self):
        if not self.adapter:
            return False
        try:
            self._adapter_iface().StopDiscovery()
            return True
        except dbus.exceptions.DBusException as e:
            logger.log("WARN", f"Failed to cancel BT discovery: {e}")
            return False

    # ------------------------------------------------------------
    # DEVICES
    # ------------------------------------------------------------
    def list_devices(self):
        """Return all devices known to BlueZ."""
        devices = []
        try:
            for path, interfaces in self._managed_objects().items():
                if self.DEVICE_IFACE not in interfaces:
                    continue
                props = interfaces[self.DEVICE_IFACE]
                mac = str(props.get("Address", "")).upper()
                devices.append(device_info(props, bonding=mac in self._bonding))
        except dbus.exceptions.DBusException as e:
            logger.log("ERROR", f"DBus list devices failed: {e}")
        return devices

    def get_device(self, mac):
        mac = mac.upper()
        for device in self.list_devices():
            if device["mac"] == mac:
                return device
        return None

    # ------------------------------------------------------------
    # PAIRING
    # ------------------------------------------------------------
    def pair(self, mac):
        """
        Start pairing without blocking.
        The outcome arrives as a bt_bond_state_changed event.
        """
        mac = mac.upper()
        dev_path = self._device_path(mac)
        if not dev_path:
            logger.log("ERROR", f"Pairing failed for {mac}: device not known to BlueZ")
            return False

        try:
            dev_obj = self.bus.get_object(self.BLUEZ_SERVICE, dev_path)
            dev_iface = dbus.Interface(dev_obj, self.DEVICE_IFACE)
            self._bonding.add(mac)
            dev_iface.Pair(
                reply_handler=lambda: self._on_pair_reply(mac),
                error_handler=lambda e: self._on_pair_error(mac, e),
                timeout=60
            )
        except dbus.exceptions.DBusException as e:
            self._bonding.discard(mac)
            logger.log("ERROR", f"Pairing failed for {mac}: {e}")
            return False

        router.publish("bt_bond_state_changed", {"mac": mac, "bond_state": BOND_BONDING})
        return True

    def _on_pair_reply(self, mac):
        # Paired=True normally arrives as PropertiesChanged as well
        if mac in self._bonding:
            self._bonding.discard(mac)
            router.publish("bt_bond_state_changed", {"mac": mac, "bond_state": BOND_BONDED})

    def _on_pair_error(self, mac, error):
        logger.log("WARN", f"Pair() for {mac} failed: {error}")
        self._bonding.discard(mac)
        router.publish("bt_bond_state_changed", {"mac": mac, "bond_state": BOND_NONE})

    # ------------------------------------------------------------
    # SIGNALS
    # ------------------------------------------------------------
    def watch(self):
        """Translate BlueZ signals into router events."""
        if self._watching:
            return
        self.bus.add_signal_receiver(
            self._on_interfaces_added,
            dbus_interface=self.OM_IFACE,
            signal_name="InterfacesAdded"
        )
        self.bus.add_signal_receiver(
            self._on_properties_changed,
            dbus_interface=self.PROPS_IFACE,
            signal_name="PropertiesChanged",
            path_keyword="path"
        )
        self._watching = True

    def _on_interfaces_added(self, path, interfaces):
        if self.DEVICE_IFACE not in interfaces:
            return
        props = interfaces[self.DEVICE_IFACE]
        info = device_info(props)
        logger.log("DEBUG", f"Device found: {info['mac']} ({info['name']})")
        router.publish("bt_device_found", info)

    def _on_properties_changed(self, interface, changed, invalidated, path=None):
        if interface == self.ADAPTER_IFACE and path == self.adapter:
            if "Discovering" in changed:
                event = "bt_discovery_started" if changed["Discovering"] else "bt_discovery_finished"
                router.publish(event, {})
            return

        if interface != self.DEVICE_IFACE:
            return

        props = self._device_props(path)
        if props is None:
            return
        mac = str(props.get("Address", "")).upper()

        if "Paired" in changed:
            bonded = bool(changed["Paired"])
            self._bonding.discard(mac)
            router.publish("bt_bond_state_changed", {
                "mac": mac,
                "bond_state": BOND_BONDED if bonded else BOND_NONE
            })

        if "RSSI" in changed or "Name" in changed:
            router.publish("bt_device_found", device_info(props, bonding=mac in self._bonding))

    def _device_props(self, path):
        try:
            dev_obj = self.bus.get_object(self.BLUEZ_SERVICE, path)
            return dbus.Interface(dev_obj, self.PROPS_IFACE).GetAll(self.DEVICE_IFACE)
        except dbus.exceptions.DBusException as e:
            logger.log("DEBUG", f"Could not read properties of {path}: {e}")
            return None

    # ------------------------------------------------------------
    # MAIN LOOP
    # ------------------------------------------------------------
    def run(self):
        """Run the GLib loop that delivers D-Bus signals (blocking)."""
        self.watch()
        self.loop = GLib.MainLoop()
        logger.log("INFO", "BlueZ signal loop running")
        self.loop.run()

    def stop(self):
        if self.loop is not None and self.loop.is_running():
            self.loop.quit()

    # ------------------------------------------------------------
    # HELPERS
    # ------------------------------------------------------------
    def _device_path(self, mac):
        """Find DBus object path for a MAC."""
        try:
            for path, interfaces in self._managed_objects().items():
                if self.DEVICE_IFACE not in interfaces:
                    continue
                if str(interfaces[self.DEVICE_IFACE].get("Address", "")).upper() == mac:
                    return path
        except dbus.exceptions.DBusException as e:
            logger.log("ERROR", f"DBus device lookup failed for {mac}: {e}")
        return None
