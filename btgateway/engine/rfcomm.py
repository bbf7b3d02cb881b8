#!/usr/bin/env python3
# RFCOMM Engine for BT-Gateway
# SDP channel lookup and Serial Port Profile connects with a tiered fallback

import re
import socket
import subprocess
import threading

from btgateway.logger import logger
from btgateway.errors import ConnectionFailed

# <bluetooth/rfcomm.h>
SOL_RFCOMM = 18
RFCOMM_LM = 0x03
RFCOMM_LM_AUTH = 0x0002
RFCOMM_LM_ENCRYPT = 0x0004

TIER_INSECURE = "insecure"
TIER_SECURE = "secure"
TIER_DIRECT = "direct_channel"

CHANNEL_RE = re.compile(r"Channel:\s*(\d+)")
CLASS_ID_RE = re.compile(r"\((0x[0-9a-fA-F]+)\)")
UUID128_RE = re.compile(r"^\"?([0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})")

BASE_UUID_SUFFIX = "-0000-1000-8000-00805f9b34fb"


def short_uuid(uuid):
    """
    Return the 16-bit form ("0x1101") of a Bluetooth base UUID,
    or the lower-cased full UUID when it is not on the base UUID.
    """
    uuid = uuid.lower()
    if uuid.endswith(BASE_UUID_SUFFIX) and uuid.startswith("0000"):
        return "0x" + uuid[4:8]
    return uuid


def parse_sdp_records(text):
    """
    Parse `sdptool browse` / `sdptool search` output.

    Returns a list of {"name", "class_ids", "channel"} dicts, one per
    service record. class_ids holds the 16-bit ids ("0x1101") and any
    128-bit UUIDs listed under "Service Class ID List". channel is the
    RFCOMM channel as int, or None for non-RFCOMM services.
    """
    records = []
    current = None
    section = None
    after_rfcomm = False

    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue

        # Name precedes RecHandle; unnamed records start at RecHandle
        is_name = line.startswith("Service Name:")
        if is_name or line.startswith("Service RecHandle:"):
            if is_name or current is None or current["handle"] is not None:
                current = {"name": None, "handle": None, "class_ids": [], "channel": None}
                records.append(current)
            current["name" if is_name else "handle"] = line.split(":", 1)[1].strip()
            section = None
            continue

        if current is None:
            continue

        if line.endswith(":") and not line.startswith('"'):
            section = line[:-1]
            after_rfcomm = False
            continue

        if section == "Service Class ID List":
            m = CLASS_ID_RE.search(line)
            if m:
                current["class_ids"].append(m.group(1).lower())
            else:
                m = UUID128_RE.match(line)
                if m:
                    current["class_ids"].append(m.group(1).lower())

        elif section == "Protocol Descriptor List":
            if '"RFCOMM"' in line:
                after_rfcomm = True
            elif line.startswith('"'):
                after_rfcomm = False
            m = CHANNEL_RE.search(line)
            if m and after_rfcomm:
                current["channel"] = int(m.group(1))

    return [
        {"name": r["name"], "class_ids": r["class_ids"], "channel": r["channel"]}
        for r in records
    ]


def find_service_channel(mac, uuid, timeout=15):
    """Ask the remote SDP server which RFCOMM channel serves uuid."""
    target = short_uuid(uuid)
    try:
        result = subprocess.run(
            ["sdptool", "search", "--bdaddr", mac, target],
            capture_output=True, text=True, timeout=timeout
        )
    except FileNotFoundError:
        logger.log("ERROR", "sdptool not found, cannot resolve service channel")
        return None
    except subprocess.TimeoutExpired:
        logger.log("WARN", f"SDP lookup timed out for {mac}")
        return None

    if result.returncode != 0:
        logger.log("WARN", f"SDP lookup failed for {mac}: {result.stderr.strip()}")
        return None

    for record in parse_sdp_records(result.stdout):
        if record["channel"] is not None and target in record["class_ids"]:
            return record["channel"]
    return None


def open_socket(mac, channel, secure, timeout=8.0):
    """
    Open an RFCOMM socket to mac on channel.
    A secure socket requires an authenticated, encrypted link.
    Raises OSError on failure; the socket is closed first.
    """
    sock = socket.socket(socket.AF_BLUETOOTH, socket.SOCK_STREAM, socket.BTPROTO_RFCOMM)
    try:
        if secure:
            sock.setsockopt(SOL_RFCOMM, RFCOMM_LM, RFCOMM_LM_AUTH | RFCOMM_LM_ENCRYPT)
        sock.settimeout(timeout)
        sock.connect((mac, channel))
        return sock
    except OSError:
        sock.close()
        raise


def _attempt(tier, mac, channel, secure, timeout, opener, attempts):
    try:
        return opener(mac, channel, secure, timeout)
    except OSError as e:
        logger.log("WARN", f"{tier.replace('_', ' ').capitalize()} connection failed for {mac} on channel {channel}: {e}")
        if attempts is not None:
            attempts.append((tier, str(e)))
        return None


def connect_insecure(mac, channel, timeout=8.0, opener=open_socket, attempts=None):
    """RFCOMM connect with no link security. Returns the socket or None."""
    return _attempt(TIER_INSECURE, mac, channel, False, timeout, opener, attempts)


def connect_secure(mac, channel, timeout=8.0, opener=open_socket, attempts=None):
    """RFCOMM connect on an authenticated, encrypted link. Returns the socket or None."""
    return _attempt(TIER_SECURE, mac, channel, True, timeout, opener, attempts)


def connect_direct_channel(mac, channel=1, timeout=8.0, opener=open_socket, attempts=None):
    """Secure connect on a fixed channel, without asking SDP. Returns the socket or None."""
    return _attempt(TIER_DIRECT, mac, channel, True, timeout, opener, attempts)


TIER_CONNECTS = {
    TIER_INSECURE: connect_insecure,
    TIER_SECURE: connect_secure,
    TIER_DIRECT: connect_direct_channel
}


class RfcommConnection:
    """An open RFCOMM link and the tier that produced it."""

    def __init__(self, sock, mac, tier, channel):
        self.sock = sock
        self.mac = mac
        self.tier = tier
        self.channel = channel
        self._lock = threading.Lock()

    def close(self):
        with self._lock:
            sock, self.sock = self.sock, None
        if sock is None:
            return
        try:
            sock.close()
        except OSError as e:
            logger.log("ERROR", f"Could not close socket for {self.mac}: {e}")

    def describe(self):
        return {"mac": self.mac, "tier": self.tier, "channel": self.channel}


class RfcommConnector:
    """
    Runs the configured connection strategy:
      fallback → insecure, then secure, then direct secure connect on the fallback channel
      secure   → a single secure attempt
    """

    def __init__(self, uuid, strategy="fallback", fallback_channel=1, timeout=8.0,
                 lookup=find_service_channel, opener=open_socket):
        self.uuid = uuid
        self.strategy = strategy
        self.fallback_channel = fallback_channel
        self.timeout = timeout
        self._lookup = lookup
        self._open = opener

    @classmethod
    def from_config(cls, bt_cfg):
        return cls(
            uuid=bt_cfg["service_uuid"],
            strategy=bt_cfg["connect_strategy"],
            fallback_channel=bt_cfg["fallback_channel"],
            timeout=bt_cfg["connect_timeout"]
        )

    def tiers(self):
        if self.strategy == "secure":
            return [TIER_SECURE]
        return [TIER_INSECURE, TIER_SECURE, TIER_DIRECT]

    # ------------------------------------------------------------
    def connect(self, mac, name=None):
        label = name or mac
        attempts = []
        channel = None
        resolved = False

        for tier in self.tiers():
            if tier == TIER_DIRECT:
                target = self.fallback_channel
            else:
                if not resolved:
                    channel = self._lookup(mac, self.uuid)
                    resolved = True
                if channel is None:
                    logger.log("WARN", f"No RFCOMM channel for {self.uuid} on {label}")
                    attempts.append((tier, "service not found"))
                    continue
                target = channel

            logger.log("DEBUG", f"Attempting {tier} connection to {label} on channel {target}")
            sock = TIER_CONNECTS[tier](mac, target, self.timeout, opener=self._open, attempts=attempts)
            if sock is not None:
                logger.log("INFO", f"Connected to {label} ({tier}, channel {target})")
                return RfcommConnection(sock, mac, tier, target)

        raise ConnectionFailed(mac, attempts)

