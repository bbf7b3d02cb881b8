# BT-Gateway Logger
# Simple centralized logger shared by the engine, workers and API

import threading
import time

LEVELS = {"DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40}


class Logger:
    def __init__(self, level="INFO", max_entries=500):
        self.entries = []
        self.max_entries = max_entries
        self.level = level
        self._lock = threading.Lock()

    def set_level(self, level):
        level = str(level).upper()
        if level not in LEVELS:
            raise ValueError(f"unknown log level: {level}")
        self.level = level

    def log(self, level, message):
        if LEVELS.get(level, 20) < LEVELS[self.level]:
            return

        timestamp = time.strftime("%Y-%m-%d %H:%M:%S")
        entry = f"[{timestamp}] [{level}] {message}"

        with self._lock:
            self.entries.append(entry)
            if len(self.entries) > self.max_entries:
                self.entries.pop(0)

        print(entry, flush=True)

    def get_logs(self, limit=None):
        with self._lock:
            if limit:
                return self.entries[-limit:]
            return list(self.entries)

# Global shared logger instance
logger = Logger()
