"""
Configuration watcher for runtime config changes.

Monitors the control file written by the endpoint and triggers callbacks on
changes. A key counts as changed when a newer control revision wrote it, even
if the value equals the last one seen (the app may have moved away from it
through a key press in the meantime).
"""

import threading
import time
from typing import Any, Callable, Dict, Optional

from src.endpoint.pipeline_state import control_key_revision, read_control
from src.utils.AppLogging import logger


class ConfigWatcher:
    """
    Watch control values for changes and trigger callbacks.

    Polls the control file at specified intervals and invokes callbacks
    when watched values change.
    """

    def __init__(self, control_file: Optional[str] = None, poll_interval: float = 0.5):
        """
        Initialize config watcher.

        Args:
            control_file: Path to the JSON control file (None = env/default)
            poll_interval: Seconds between polls
        """
        self.control_file = control_file
        self.poll_interval = poll_interval

        self._watches: Dict[str, Callable[[Any, Any], None]] = {}
        self._current_values: Dict[str, Any] = {}
        self._seen_revisions: Dict[str, int] = {}
        self.revision = 0  # control revision whose values have been handed to callbacks
        self._running = False
        self._thread: Optional[threading.Thread] = None

    def _read(self) -> Dict[str, Any]:
        return read_control(self.control_file)

    def add_watch(self, key: str, callback: Callable[[Any, Any], None]):
        """
        Add a control key to watch.

        Args:
            key: Control key to watch
            callback: Function to call when value changes (old_value, new_value)
        """
        control = self._read()
        self._watches[key] = callback
        self._current_values[key] = control.get(key)
        self._seen_revisions[key] = control_key_revision(control, key) or 0
        self.revision = max(self.revision, int(control.get("_revision", 0)))
        logger.debug(f"[ConfigWatcher] Watching: {key}")

    def remove_watch(self, key: str):
        """Remove a watch."""
        self._watches.pop(key, None)
        self._current_values.pop(key, None)
        self._seen_revisions.pop(key, None)

    def start(self):
        """Start watching in background thread."""
        if self._running:
            return

        self._running = True
        self._thread = threading.Thread(target=self._poll_loop, name="ConfigWatcher", daemon=True)
        self._thread.start()
        logger.info(f"[ConfigWatcher] Started (poll every {self.poll_interval}s)")

    def stop(self):
        """Stop watching."""
        self._running = False
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2.0)
        logger.info("[ConfigWatcher] Stopped")

    def _poll_loop(self):
        """Polling loop for control changes."""
        while self._running:
            try:
                self.check_changes()
            except Exception as e:
                logger.error(f"[ConfigWatcher] Error checking changes: {e}")

            time.sleep(self.poll_interval)

    def check_changes(self) -> int:
        """
        Fire callbacks for keys written since the last check.

        Keys stamped with a newer revision fire regardless of value; unstamped
        files fall back to comparing against the last seen value.

        Returns:
            Number of callbacks fired
        """
        control = self._read()
        fired = 0

        file_revision = int(control.get("_revision", 0))
        if file_revision < self.revision:
            logger.warning(f"[ConfigWatcher] Control revision went back ({self.revision} -> {file_revision}), resyncing")
            self._seen_revisions = {key: 0 for key in self._watches}
            self.revision = 0

        for key, callback in list(self._watches.items()):
            new_value = control.get(key)
            old_value = self._current_values.get(key)
            key_revision = control_key_revision(control, key)

            if key_revision is not None:
                changed = key_revision > self._seen_revisions.get(key, 0)
                self._seen_revisions[key] = max(key_revision, self._seen_revisions.get(key, 0))
            else:
                changed = new_value != old_value

            if new_value is not None and changed:
                logger.info(f"[ConfigWatcher] Control changed: {key}: {old_value} -> {new_value}")
                self._current_values[key] = new_value

                try:
                    callback(old_value, new_value)
                    fired += 1
                except Exception as e:
                    logger.error(f"[ConfigWatcher] Callback error for {key}: {e}")

        self.revision = max(self.revision, file_revision)
        return fired
