#!/usr/bin/env python3
# BT-Gateway REST API Server
# Exposes scan, device list, connect and settings endpoints for the Bluetooth controller

import re
import threading

from flask import Flask, request
from btgateway.logger import logger
from btgateway.config_manager import load_config, save_config, validate_bluetooth
from btgateway.errors import BluetoothUnavailable, UnknownDevice

from .helpers import require_auth, ok, fail

MAC_RE = re.compile(r"^([0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2}$")


# ------------------------------------------------------------
# API FACTORY (called from BackendEngine)
# ------------------------------------------------------------

def create_app(bt_module, worker, api_token=""):
    app = Flask(__name__)
    app.config["JSON_SORT_KEYS"] = False
    app.config["API_TOKEN"] = api_token

    # Attach backend objects
    app.bt = bt_module
    app.worker = worker

    # ============================================================
    # BLUETOOTH
    # ============================================================
    @app.get("/api/bluetooth")
    @require_auth
    def bt_status():
        return ok(app.bt.read_status())

    @app.get("/api/bluetooth/devices")
    @require_auth
    def bt_devices():
        return ok(app.bt.list_devices())

    @app.post("/api/bluetooth/scan")
    @require_auth
    def bt_scan():
        """
        action = toggle (default) / start / stop
        """
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return fail("invalid body")

        action = data.get("action", "toggle")
        if action not in ["toggle", "start", "stop"]:
            return fail("invalid action")

        try:
            if action == "stop":
                app.worker.stop_scan()
            elif action == "toggle" or not app.bt.scanning:
                app.worker.toggle_scan()
        except BluetoothUnavailable as e:
            return fail(str(e))

        return ok({"scanning": app.bt.scanning, "status": app.bt.status})

    @app.post("/api/bluetooth/connect")
    @require_auth
    def bt_connect():
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return fail("invalid body")

        mac = data.get("mac")
        if not mac:
            return fail("missing mac")
        if not isinstance(mac, str) or not MAC_RE.match(mac):
            return fail("invalid mac")

        try:
            device = app.worker.connect(mac)
        except UnknownDevice as e:
            return fail(str(e), 404)
        except BluetoothUnavailable as e:
            return fail(str(e))

        return ok({"connecting": device["mac"]})

    @app.post("/api/bluetooth/disconnect")
    @require_auth
    def bt_disconnect():
        return ok({"disconnected": app.worker.disconnect()})

    # ============================================================
    # SETTINGS
    # ============================================================
    @app.get("/api/settings")
    @require_auth
    def settings_get():
        return ok(load_config().get("bluetooth", {}))

    @app.post("/api/settings")
    @require_auth
    def settings_update():
        data = request.get_json(silent=True)
        if not isinstance(data, dict) or not data:
            return fail("missing settings")

        error = validate_bluetooth(data)
        if error:
            return fail(error)

        cfg = load_config()
        cfg.setdefault("bluetooth", {}).update(data)
        save_config(cfg)
        logger.log("INFO", f"Bluetooth settings updated: {sorted(data)} (applied on restart)")
        return ok(cfg["bluetooth"])

    # ============================================================
    # LOGS
    # ============================================================
    @app.get("/api/logs/live")
    @require_auth
    def logs_live():
        limit = request.args.get("limit", default=200, type=int)
        return ok({"recent": logger.get_logs(limit)})

    return app


# ------------------------------------------------------------
# API RUNNER
# ------------------------------------------------------------

def start_api(bt_module, worker, host="0.0.0.0", port=8000, api_token=""):
    """
    Starts Flask API server in a background thread.
    """
    app = create_app(bt_module, worker, api_token)

    def run():
        logger.log("INFO", f"REST API running on port {port}")
        app.run(
            host=host,
            port=port,
            debug=False,
            threaded=True,
            use_reloader=False
        )

    t = threading.Thread(target=run, daemon=True)
    t.start()
    return t
