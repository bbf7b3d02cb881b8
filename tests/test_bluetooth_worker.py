"""Tests for the Bluetooth worker (scan / pair / connect controller)."""

import pytest

from btgateway.errors import BluetoothUnavailable, ConnectionFailed, UnknownDevice
from btgateway.ipc.router import router


def messages(bt_module):
    return [n["message"] for n in bt_module.notifications]


class TestScanning:
    """Tests for the scan toggle and its timeout."""

    def test_toggle_starts_discovery(self, worker, engine, bt_module, timers):
        assert worker.toggle_scan() is True
        assert bt_module.scanning is True
        assert bt_module.status == "Starting scan..."
        assert ("start_discovery",) in engine.calls
        assert timers[0].interval == 10
        assert timers[0].started

    def test_toggle_while_scanning_stops(self, worker, engine, bt_module):
        worker.toggle_scan()
        assert worker.toggle_scan() is False
        assert bt_module.scanning is False
        assert ("cancel_discovery",) in engine.calls

    def test_timeout_stops_scan(self, worker, engine, bt_module, timers):
        worker.toggle_scan()
        timers[0].fire()
        assert bt_module.scanning is False
        assert engine.discovering is False

    def test_restart_cancels_previous_timer(self, worker, timers):
        worker.start_scan()
        worker.stop_scan()
        worker.start_scan()
        assert timers[0].cancelled
        assert not timers[1].cancelled

    def test_failed_discovery_resets_flag(self, worker, engine, bt_module):
        engine.start_ok = False
        assert worker.toggle_scan() is False
        assert bt_module.scanning is False
        assert "Failed to start discovery" in messages(bt_module)

    def test_powers_adapter_when_off(self, worker, engine, bt_module):
        engine.powered = False
        assert worker.toggle_scan() is True
        assert ("set_power", True) in engine.calls
        assert bt_module.powered is True

    def test_adapter_off_without_auto_power(self, worker, engine, bt_module):
        engine.powered = False
        worker.auto_power = False
        assert worker.toggle_scan() is False
        assert ("start_discovery",) not in engine.calls
        assert "Bluetooth must be enabled to scan for devices" in messages(bt_module)

    def test_no_adapter(self, worker, engine):
        engine.available = False
        with pytest.raises(BluetoothUnavailable):
            worker.toggle_scan()

    def test_stop_when_idle_is_noop(self, worker, engine):
        worker.stop_scan()
        assert ("cancel_discovery",) not in engine.calls


class TestDiscoveryEvents:
    """Tests for BlueZ discovery events reaching the device list."""

    def test_started_clears_list(self, worker, bt_module):
        bt_module.add_device({"mac": "AA:BB:CC:DD:EE:09", "name": "Old"})
        router.publish("bt_discovery_started", {})
        assert bt_module.devices == []
        assert bt_module.status == "Scanning for devices..."

    def test_found_devices_are_unique_by_mac(self, worker, bt_module):
        router.publish("bt_device_found", {"mac": "AA:BB:CC:DD:EE:01", "name": None, "rssi": -70})
        router.publish("bt_device_found", {"mac": "aa:bb:cc:dd:ee:01", "name": "Printer", "rssi": -50})
        router.publish("bt_device_found", {"mac": "AA:BB:CC:DD:EE:02", "name": "Phone"})

        devices = bt_module.list_devices()
        assert [d["mac"] for d in devices] == ["AA:BB:CC:DD:EE:01", "AA:BB:CC:DD:EE:02"]
        assert devices[0]["name"] == "Printer"
        assert devices[0]["rssi"] == -50

    def test_finished_reports_count(self, worker, bt_module):
        worker.start_scan()
        router.publish("bt_device_found", {"mac": "AA:BB:CC:DD:EE:01"})
        router.publish("bt_device_found", {"mac": "AA:BB:CC:DD:EE:02"})
        router.publish("bt_discovery_finished", {})
        assert bt_module.status == "Scan completed. Found 2 devices."
        assert bt_module.scanning is False

    def test_found_without_mac_ignored(self, worker, bt_module):
        router.publish("bt_device_found", {"name": "ghost"})
        assert bt_module.devices == []

    def test_status_update_published(self, worker, events):
        router.publish("bt_device_found", {"mac": "AA:BB:CC:DD:EE:01"})
        updates = [data for name, data in events if name == "bt_update"]
        assert updates[-1]["devices"][0]["mac"] == "AA:BB:CC:DD:EE:01"


class TestConnect:
    """Tests for the connect flow."""

    def test_bonded_device_connects(self, worker, connector, bt_module, bonded_device, events):
        worker.connect("aa:bb:cc:dd:ee:01")

        assert connector.attempts == ["AA:BB:CC:DD:EE:01"]
        assert worker.connection is connector.connections[0]
        assert bt_module.status == "Connected to: Gateway"
        assert bt_module.connected["mac"] == "AA:BB:CC:DD:EE:01"
        assert bt_module.get_device("AA:BB:CC:DD:EE:01")["connected"] is True
        assert "Connected to Gateway" in messages(bt_module)

        states = [d["state"] for n, d in events if n == "bt_connection"]
        assert states == ["connecting", "connected"]

    def test_unknown_device(self, worker):
        with pytest.raises(UnknownDevice):
            worker.connect("11:22:33:44:55:66")

    def test_device_known_only_to_bluez(self, worker, engine, connector):
        engine.add("AA:BB:CC:DD:EE:07", "Paired Earlier", "bonded")
        worker.connect("AA:BB:CC:DD:EE:07")
        assert connector.attempts == ["AA:BB:CC:DD:EE:07"]

    def test_no_adapter(self, worker, engine, bonded_device):
        engine.available = False
        with pytest.raises(BluetoothUnavailable):
            worker.connect(bonded_device["mac"])

    def test_discovery_cancelled_and_delayed(self, worker, engine, connector, bonded_device, timers):
        engine.discovering = True
        worker.connect(bonded_device["mac"])

        assert ("cancel_discovery",) in engine.calls
        assert connector.attempts == []
        assert timers[-1].interval == 0.5

        timers[-1].fire()
        assert connector.attempts == [bonded_device["mac"]]

    def test_stop_cancels_pending_connect(self, worker, engine, connector, bonded_device, timers):
        engine.discovering = True
        worker.connect(bonded_device["mac"])
        worker.stop()
        timers[-1].fire()
        assert connector.attempts == []
        assert ("stop",) in engine.calls

    def test_new_connection_replaces_old(self, worker, engine, connector, bt_module, bonded_device):
        second = engine.add("AA:BB:CC:DD:EE:02", "Second", "bonded")
        bt_module.add_device(second)

        worker.connect(bonded_device["mac"])
        worker.connect(second["mac"])

        assert connector.connections[0].closed
        assert worker.connection is connector.connections[1]
        assert bt_module.get_device(bonded_device["mac"])["connected"] is False

    def test_all_tiers_failed(self, worker, connector, bt_module, bonded_device, events):
        connector.error = ConnectionFailed(bonded_device["mac"], [("secure", "refused")])
        worker.connect(bonded_device["mac"])

        assert worker.connection is None
        assert "All connection attempts failed for Gateway" in messages(bt_module)
        states = [d["state"] for n, d in events if n == "bt_connection"]
        assert states == ["connecting", "failed"]

    def test_unexpected_error(self, worker, connector, bt_module, bonded_device):
        connector.error = RuntimeError("adapter reset")
        worker.connect(bonded_device["mac"])
        assert "Connection failed: adapter reset" in messages(bt_module)
        assert worker.connection is None

    def test_unnamed_device(self, worker, engine, bt_module, connector):
        device = engine.add("AA:BB:CC:DD:EE:03", None, "bonded")
        bt_module.add_device(device)
        worker.connect(device["mac"])
        assert bt_module.status == "Connected to: Unknown Device"


class TestPairing:
    """Tests for the pairing watcher."""

    @pytest.fixture
    def unpaired(self, engine, bt_module):
        device = engine.add("AA:BB:CC:DD:EE:04", "Headset", "none")
        bt_module.add_device(device)
        return device

    def test_pairing_initiated(self, worker, engine, connector, bt_module, unpaired):
        worker.connect(unpaired["mac"])
        assert engine.paired == [unpaired["mac"]]
        assert connector.attempts == []
        assert "Pairing initiated with Headset" in messages(bt_module)

    def test_bonded_then_connects(self, worker, connector, bt_module, unpaired):
        worker.connect(unpaired["mac"])
        router.publish("bt_bond_state_changed", {"mac": unpaired["mac"], "bond_state": "bonding"})
        assert connector.attempts == []

        router.publish("bt_bond_state_changed", {"mac": unpaired["mac"], "bond_state": "bonded"})
        assert connector.attempts == [unpaired["mac"]]
        assert "Paired with Headset" in messages(bt_module)
        assert bt_module.get_device(unpaired["mac"])["bond_state"] == "bonded"

        # watcher is gone after the first result
        router.publish("bt_bond_state_changed", {"mac": unpaired["mac"], "bond_state": "bonded"})
        assert connector.attempts == [unpaired["mac"]]

    def test_pairing_failed(self, worker, connector, bt_module, unpaired):
        worker.connect(unpaired["mac"])
        router.publish("bt_bond_state_changed", {"mac": unpaired["mac"], "bond_state": "none"})
        assert "Pairing failed with Headset" in messages(bt_module)
        assert connector.attempts == []
        assert "bt_bond_state_changed" not in router.subscribers

    def test_other_device_events_ignored(self, worker, connector, unpaired):
        worker.connect(unpaired["mac"])
        router.publish("bt_bond_state_changed", {"mac": "AA:BB:CC:DD:EE:99", "bond_state": "bonded"})
        assert connector.attempts == []

    def test_pair_request_rejected(self, worker, engine, bt_module, unpaired):
        engine.pair_ok = False
        worker.connect(unpaired["mac"])
        assert "Failed to initiate pairing with Headset" in messages(bt_module)
        assert "bt_bond_state_changed" not in router.subscribers

    def test_currently_bonding(self, worker, engine, connector, bt_module):
        device = engine.add("AA:BB:CC:DD:EE:05", "Keyboard", "bonding")
        bt_module.add_device(device)
        worker.connect(device["mac"])
        assert engine.paired == []
        assert connector.attempts == []
        assert "Device is currently pairing. Please wait..." in messages(bt_module)


class TestLifecycle:
    """Tests for start / stop / disconnect."""

    def test_start_without_adapter(self, worker, engine, bt_module):
        engine.available = False
        worker.start()
        assert bt_module.available is False
        assert ("run",) not in engine.calls
        assert "Bluetooth not supported" in messages(bt_module)

    def test_start_runs_signal_loop(self, worker, engine, bt_module):
        worker.start()
        assert bt_module.available is True
        assert ("run",) in engine.calls

    def test_disconnect(self, worker, bt_module, connector, bonded_device, events):
        worker.connect(bonded_device["mac"])
        assert worker.disconnect() is True
        assert connector.connections[0].closed
        assert bt_module.connected is None
        assert worker.disconnect() is False
        states = [d["state"] for n, d in events if n == "bt_connection"]
        assert states[-1] == "disconnected"

    def test_stop_closes_connection_and_scan(self, worker, engine, connector, bt_module, bonded_device):
        worker.connect(bonded_device["mac"])
        worker.start_scan()
        worker.stop()
        assert connector.connections[0].closed
        assert bt_module.scanning is False
        assert "bt_device_found" not in router.subscribers
