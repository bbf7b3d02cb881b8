# BT-Gateway config_manager.py
# JSON configuration with defaults for the Bluetooth controller, API and websocket

import copy
import json
import os

from btgateway.logger import logger

CONFIG_PATH = os.environ.get("BTGATEWAY_CONFIG", "/etc/bt_gateway/config.json")

SPP_UUID = "00001101-0000-1000-8000-00805F9B34FB"

CONNECT_STRATEGIES = ("fallback", "secure")

DEFAULT_CONFIG = {
    "bluetooth": {
        "scan_timeout": 10,
        "discovery_cancel_delay": 0.5,
        "connect_strategy": "fallback",
        "service_uuid": SPP_UUID,
        "fallback_channel": 1,
        "connect_timeout": 8,
        "auto_power": True
    },
    "api": {
        "host": "0.0.0.0",
        "port": 8000,
        "token": ""
    },
    "websocket": {
        "host": "0.0.0.0",
        "port": 9000
    },
    "log_level": "INFO"
}


def _config_path():
    return os.environ.get("BTGATEWAY_CONFIG", CONFIG_PATH)


def _merge_defaults(cfg, defaults):
    """Fill keys missing from cfg with default values (recursively)."""
    merged = copy.deepcopy(defaults)
    for key, value in cfg.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge_defaults(value, merged[key])
        else:
            merged[key] = value
    return merged


def load_config():
    path = _config_path()
    if not os.path.exists(path):
        try:
            save_config(DEFAULT_CONFIG)
        except OSError as e:
            logger.log("WARN", f"Could not write default config to {path}: {e}")
        return copy.deepcopy(DEFAULT_CONFIG)
    try:
        with open(path, "r") as f:
            return _merge_defaults(json.load(f), DEFAULT_CONFIG)
    except (OSError, ValueError) as e:
        logger.log("ERROR", f"Failed to read config {path}: {e}")
        return copy.deepcopy(DEFAULT_CONFIG)


def save_config(cfg):
    path = _config_path()
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w") as f:
        json.dump(cfg, f, indent=4)


def validate_bluetooth(section):
    """
    Check a (partial) bluetooth section.
    Returns an error string, or None when every given key is valid.
    """
    for key in ("scan_timeout", "discovery_cancel_delay", "connect_timeout"):
        if key in section:
            value = section[key]
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                return f"invalid {key}"

    if "connect_strategy" in section and section["connect_strategy"] not in CONNECT_STRATEGIES:
        return "invalid connect_strategy"

    if "fallback_channel" in section:
        channel = section["fallback_channel"]
        if isinstance(channel, bool) or not isinstance(channel, int) or not 1 <= channel <= 30:
            return "invalid fallback_channel"

    if "auto_power" in section and not isinstance(section["auto_power"], bool):
        return "invalid auto_power"

    unknown = set(section) - set(DEFAULT_CONFIG["bluetooth"])
    if unknown:
        return f"unknown key {sorted(unknown)[0]}"

    return None

