# cellar/modules/logger.py
import datetime
import json
import os
import sys
import threading

from cellar.modules.config import config

RESET = "\033[0m"


class Logger:
    """
    Named logger configured from the [logging] section.

    Console lines go to stderr so command output on stdout stays parseable;
    the optional log file is shared by every component and rotated once it
    passes `max_log_size_kb`. CELLAR_LOG_LEVEL overrides the configured level.
    """

    LEVELS = {"debug": 10, "info": 20, "success": 25, "warning": 30, "error": 40}

    COLORS = {
        "debug": "\033[90m",
        "info": "\033[94m",
        "success": "\033[92m",
        "warning": "\033[93m",
        "error": "\033[91m",
    }

    _locks = {}
    _locks_guard = threading.Lock()

    def __init__(self, name="cellar"):
        self.name = name
        self.log_file = os.path.expanduser(
            config.get("logging", "log_file", fallback="~/.cache/cellar/cellar.log"))
        self.to_file = config.getboolean("logging", "log_to_file", fallback=False)
        self.to_console = config.getboolean("logging", "log_to_console", fallback=True)
        self.color = config.getboolean("logging", "color_output", fallback=True)
        self.utc = config.getboolean("logging", "timestamp_utc", fallback=False)
        self.as_json = config.get("logging", "log_format", fallback="text").lower() == "json"
        self.rotate_at = config.getint("logging", "max_log_size_kb", fallback=0) * 1024

        level = os.environ.get("CELLAR_LOG_LEVEL") or config.get("logging", "level", fallback="info")
        self.threshold = self.LEVELS.get(level.lower(), self.LEVELS["info"])

        if self.to_file and not self._prepare_file():
            self.to_file = False
        with Logger._locks_guard:
            self._lock = Logger._locks.setdefault(self.log_file, threading.RLock())

    # ---------------------------
    # Output
    # ---------------------------
    def _prepare_file(self) -> bool:
        try:
            os.makedirs(os.path.dirname(self.log_file) or ".", exist_ok=True)
            return True
        except OSError as e:
            print(f"cellar: log file disabled, cannot create {os.path.dirname(self.log_file)}: {e}",
                  file=sys.stderr)
            return False

    def _stamp(self) -> str:
        tz = datetime.timezone.utc if self.utc else None
        return datetime.datetime.now(tz).strftime("%Y-%m-%d %H:%M:%S")

    def _render(self, level: str, message: str) -> str:
        if self.as_json:
            return json.dumps({"timestamp": self._stamp(), "logger": self.name,
                               "level": level.upper(), "message": message})
        return f"[{self._stamp()}] [{self.name}] [{level.upper()}] {message}"

    def _append(self, line: str):
        if self.rotate_at > 0 and os.path.exists(self.log_file) \
                and os.path.getsize(self.log_file) > self.rotate_at:
            try:
                os.replace(self.log_file, self.log_file + ".1")
            except OSError as e:
                print(f"cellar: cannot rotate {self.log_file}: {e}", file=sys.stderr)
        try:
            with open(self.log_file, "a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except OSError as e:
            print(f"cellar: cannot write {self.log_file}: {e}", file=sys.stderr)

    def enabled_for(self, level: str) -> bool:
        return self.LEVELS.get(level.lower(), 0) >= self.threshold

    def log(self, level, message):
        level = level.lower()
        if not self.enabled_for(level):
            return
        line = self._render(level, message)
        with self._lock:
            if self.to_console:
                if self.color and not self.as_json and sys.stderr.isatty():
                    print(f"{self.COLORS.get(level, '')}{line}{RESET}", file=sys.stderr)
                else:
                    print(line, file=sys.stderr)
            if self.to_file:
                self._append(line)

    def debug(self, message):
        self.log("debug", message)

    def info(self, message):
        self.log("info", message)

    def success(self, message):
        self.log("success", message)

    def warning(self, message):
        self.log("warning", message)

    def error(self, message):
        self.log("error", message)
