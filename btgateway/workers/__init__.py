"""
BT-Gateway Background Workers
=============================

- BluetoothWorker: reacts to BlueZ events and user commands, runs
  connection attempts on their own threads.
"""
