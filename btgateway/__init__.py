"""
BT-Gateway Backend Package
==========================

Scans for nearby Bluetooth Classic devices through BlueZ and connects to a
selected device over RFCOMM (Serial Port Profile).

Folder structure:

btgateway/
    api/            - REST API server + WebSocket push
    engine/         - BlueZ D-Bus engine, RFCOMM connector
    ipc/            - IPC router
    modules/        - State module (discovered devices, connection)
    workers/        - Bluetooth worker (scan / pair / connect controller)
    main.py         - Backend engine entrypoint

Import usage example:

    from btgateway.engine.rfcomm import RfcommConnector
    from btgateway.workers.bluetooth_worker import BluetoothWorker
    from btgateway.modules.bluetooth.module import BluetoothModule
"""

__version__ = "1.0.0"
