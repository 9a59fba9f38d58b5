import json
import logging
import os
import threading
import traceback
from datetime import datetime, timezone

logger = logging.getLogger("ErrorSystem")


class ErrorManager:
    """Hands out per-status incrementing error codes and logs each failure once.

    Counters survive restarts through a small JSON file, so the same code
    never points at two different incidents in the logs.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls, *args, **kwargs):
        if not cls._instance:
            with cls._lock:
                if not cls._instance:
                    cls._instance = super(ErrorManager, cls).__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self, persistence_file="error_counters.json"):
        if self._initialized:
            return
        self.persistence_file = persistence_file
        self.counters = {}
        self.file_lock = threading.Lock()
        self.config = {"increment_step": 1}
        self.load_counters()
        self._initialized = True

    def configure(self, app_config):
        """Update configuration from Flask app config."""
        counter_file = app_config.get("ERROR_COUNTER_FILE")
        if counter_file and counter_file != self.persistence_file:
            self.persistence_file = counter_file
            self.load_counters()
        if "ERROR_INCREMENT_STEP" in app_config:
            self.config["increment_step"] = app_config["ERROR_INCREMENT_STEP"]

    def load_counters(self):
        if os.path.exists(self.persistence_file):
            try:
                with open(self.persistence_file, "r") as f:
                    self.counters = json.load(f)
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Could not read error counters, starting fresh: {e}")
                self.counters = {}
        else:
            self.counters = {}

    def save_counters(self):
        with self.file_lock:
            try:
                with open(self.persistence_file, "w") as f:
                    json.dump(self.counters, f)
            except IOError as e:
                logger.error(f"Failed to save error counters: {e}")

    def get_next_code(self, base_code):
        """First call for a status returns the status itself (500), then 501, 502..."""
        base_str = str(base_code)
        with self._lock:
            if base_str not in self.counters:
                self.counters[base_str] = int(base_code)
            else:
                self.counters[base_str] += self.config["increment_step"]
            current_code = self.counters[base_str]
            self.save_counters()
            return current_code

    def log_error(self, base_code, message, exception=None, context=None):
        unique_code = self.get_next_code(base_code)
        timestamp = datetime.now(timezone.utc).isoformat()

        stack_trace = ""
        if exception is not None and exception.__traceback__ is not None:
            stack_trace = "".join(
                traceback.format_exception(type(exception), exception, exception.__traceback__)
            )

        log_entry = {
            "error_code": unique_code,
            "timestamp": timestamp,
            "message": message,
            "stack_trace": stack_trace,
            "context": context or {},
        }

        console_output = (
            f"\n[ERROR LOG START]"
            f"\nCode: {unique_code}"
            f"\nTime: {timestamp}"
            f"\nMessage: {message}"
            f"\nContext: {context}"
            f"\nStack Trace:\n{stack_trace}"
            f"[ERROR LOG END]\n"
        )
        # Client errors are routine; only server faults go out at ERROR
        if int(base_code) >= 500:
            logger.error(console_output)
        else:
            logger.warning(console_output)

        return unique_code, log_entry


error_manager = ErrorManager()
