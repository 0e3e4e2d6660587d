import logging
import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Optional

from pesos.services.failure_tracker import FailureTracker

logger = logging.getLogger(__name__)

STATUS_IDLE = 'idle'
STATUS_RUNNING = 'running'
STATUS_COMPLETED = 'completed'
STATUS_FAILED = 'failed'

DEFAULT_LOG_LIMIT = 1000


class RunStatus:
    """
    Progress and mutual exclusion for synchronization runs.

    Lives in process memory: it is reset on restart and does not
    coordinate several processes or replicas. Deploy a single scheduler
    process (see DESIGN.md).
    """

    def __init__(self, log_limit: int = DEFAULT_LOG_LIMIT,
                 cooldown: timedelta = timedelta(hours=24),
                 clock: Callable[[], datetime] = datetime.utcnow):
        self.clock = clock
        self.is_running = False
        self.status = STATUS_IDLE
        self.last_error: Optional[str] = None
        self.last_run: Optional[datetime] = None
        self.logs = deque(maxlen=log_limit)
        self.failures = FailureTracker(cooldown=cooldown, clock=clock, on_transition=self.add_log)
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config, clock: Callable[[], datetime] = datetime.utcnow):
        return cls(
            log_limit=config.get('RUN_LOG_LIMIT', DEFAULT_LOG_LIMIT),
            cooldown=timedelta(hours=config.get('FAILURE_COOLDOWN_HOURS', 24)),
            clock=clock,
        )

    def try_start(self) -> bool:
        """Atomically claim the running flag. False if a run is in progress."""
        with self._lock:
            if self.is_running:
                return False
            self.is_running = True
            self.status = STATUS_RUNNING
            self.last_error = None
            self.logs.clear()
        return True

    def finish(self, success: bool, error: Optional[str] = None) -> None:
        with self._lock:
            self.is_running = False
            self.status = STATUS_COMPLETED if success else STATUS_FAILED
            if error:
                self.last_error = error
            if success:
                self.last_run = self.clock()

    def set_error(self, error: str) -> None:
        with self._lock:
            self.last_error = error

    def add_log(self, message: str) -> None:
        """Append a timestamped line to the run log (oldest lines are evicted)."""
        line = f"{self.clock().isoformat()} - {message}"
        with self._lock:
            self.logs.append(line)
        logger.info(message)

    def snapshot(self) -> dict:
        with self._lock:
            data = {
                'is_running': self.is_running,
                'status': self.status,
                'last_error': self.last_error,
                'last_run': self.last_run.isoformat() if self.last_run else None,
                'logs': list(self.logs),
            }
        data['failed_feeds'] = self.failures.snapshot()
        return data
