"""Pytest configuration and fixtures."""

import pytest

from btgateway.ipc.router import router
from btgateway.modules.bluetooth.module import BluetoothModule, BOND_BONDED
from btgateway.workers.bluetooth_worker import BluetoothWorker
from btgateway.api.server import create_app
from btgateway.config_manager import DEFAULT_CONFIG


class FakeTimer:
    """Stands in for threading.Timer; fire() runs the callback by hand."""

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function()


class FakeEngine:
    """In-memory BlueZ engine."""

    def __init__(self):
        self.available = True
        self.powered = True
        self.power_ok = True
        self.discovering = False
        self.start_ok = True
        self.pair_ok = True
        self.devices = {}
        self.paired = []
        self.calls = []

    def add(self, mac, name="Sensor", bond_state="none"):
        self.devices[mac] = {
            "mac": mac,
            "name": name,
            "bond_state": bond_state,
            "rssi": -60,
            "device_class": 0x1F00,
            "connected": False
        }
        return dict(self.devices[mac])

    def get_power(self):
        return self.powered

    def set_power(self, state):
        self.calls.append(("set_power", state))
        if self.power_ok:
            self.powered = state
        return self.power_ok

    def is_discovering(self):
        return self.discovering

    def start_discovery(self):
        self.calls.append(("start_discovery",))
        if self.start_ok:
            self.discovering = True
        return self.start_ok

    def cancel_discovery(self):
        self.calls.append(("cancel_discovery",))
        self.discovering = False
        return True

    def get_device(self, mac):
        device = self.devices.get(mac.upper())
        return dict(device) if device else None

    def pair(self, mac):
        self.paired.append(mac)
        return self.pair_ok

    def run(self):
        self.calls.append(("run",))

    def stop(self):
        self.calls.append(("stop",))


class FakeConnection:
    def __init__(self, mac, tier="insecure", channel=1):
        self.mac = mac
        self.tier = tier
        self.channel = channel
        self.closed = False

    def close(self):
        self.closed = True

    def describe(self):
        return {"mac": self.mac, "tier": self.tier, "channel": self.channel}


class FakeConnector:
    def __init__(self):
        self.error = None
        self.attempts = []
        self.connections = []

    def connect(self, mac, name=None):
        self.attempts.append(mac)
        if self.error is not None:
            raise self.error
        connection = FakeConnection(mac)
        self.connections.append(connection)
        return connection


@pytest.fixture(autouse=True)
def clean_router():
    """Every test starts with no subscribers on the shared router."""
    router.clear()
    yield
    router.clear()


@pytest.fixture(autouse=True)
def config_path(tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    monkeypatch.setenv("BTGATEWAY_CONFIG", str(path))
    return path


@pytest.fixture
def events():
    """Record every router event as (name, payload)."""
    seen = []
    router.subscribe("*", lambda name, data: seen.append((name, data)))
    return seen


@pytest.fixture
def timers():
    return []


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def bt_module():
    module = BluetoothModule()
    module.update_adapter(available=True, powered=True)
    return module


@pytest.fixture
def worker(bt_module, engine, connector, timers):
    def timer_factory(interval, function):
        timer = FakeTimer(interval, function)
        timers.append(timer)
        return timer

    return BluetoothWorker(
        bt_module,
        engine,
        connector,
        dict(DEFAULT_CONFIG["bluetooth"]),
        timer_factory=timer_factory,
        spawn=lambda target, *args: target(*args)
    )


@pytest.fixture
def bonded_device(engine, bt_module):
    device = engine.add("AA:BB:CC:DD:EE:01", "Gateway", BOND_BONDED)
    bt_module.add_device(device)
    return device


@pytest.fixture
def app(bt_module, worker):
    """Create application for testing."""
    flask_app = create_app(bt_module, worker)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()
