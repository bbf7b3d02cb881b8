"""
BT-Gateway Logic Modules
========================

State containers used by the backend engine:

- BluetoothModule

Workers update these modules; the API reads them.
"""
