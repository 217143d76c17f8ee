"""Cooperative cancellation for backtest runs.

The runner polls its token once per candle. A token trips either through
``cancel()`` (same process) or when its watched file appears (another process,
e.g. an admin UI, touches the file).
"""

import logging
import os
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class CancellationToken:
    """Flag polled by the replay loop."""

    def __init__(self, watch_file: Optional[str] = None):
        self.watch_file = watch_file
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    def is_canceled(self) -> bool:
        if self._event.is_set():
            return True
        if self.watch_file and os.path.exists(self.watch_file):
            logger.info("cancel_file_detected", extra={"path": self.watch_file})
            self._event.set()
            return True
        return False
