"""
BT-Gateway Engine Components
============================

Low-level engine utilities:

- bluetooth_dbus.py → BlueZ adapter, discovery, pairing and signal watching
- rfcomm.py         → SDP channel lookup + tiered RFCOMM connects

These files are imported by the main engine and the Bluetooth worker.
"""
