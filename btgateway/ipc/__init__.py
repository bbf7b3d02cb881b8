"""
BT-Gateway IPC
==============

- router.py → publish/subscribe hub shared by the engine, worker and websocket bridge
"""
