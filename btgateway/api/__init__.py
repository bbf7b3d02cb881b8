"""
BT-Gateway API
==============

- server.py     → Flask REST endpoints (status, scan, connect, settings, logs)
- helpers.py    → auth decorator + response envelope
- websocket.py  → websocket server pushing events to UI clients
- bridge.py     → forwards IPC router events to the websocket server
"""
