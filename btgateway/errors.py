# BT-Gateway errors


class GatewayError(Exception):
    """Base class for gateway errors."""


class BluetoothUnavailable(GatewayError):
    """No Bluetooth adapter is present on this host."""

    def __init__(self, message="Bluetooth not supported"):
        super().__init__(message)


class UnknownDevice(GatewayError):
    def __init__(self, mac):
        super().__init__(f"Unknown device {mac}")
        self.mac = mac


class ConnectionFailed(GatewayError):
    """Every RFCOMM connection tier failed for a device."""

    def __init__(self, mac, attempts=None):
        super().__init__(f"All connection attempts failed for {mac}")
        self.mac = mac
        self.attempts = attempts or []
