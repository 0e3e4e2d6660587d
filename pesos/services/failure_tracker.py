"""Per-source failure backoff."""
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

DEFAULT_COOLDOWN = timedelta(hours=24)


class FailureTracker:
    """
    Remember which feed URLs failed and when.

    A URL with no entry is healthy. A recorded failure makes the URL
    skipped until the cooldown has elapsed; the entry is then dropped and
    the URL is retried. clear() drops every entry at once.
    """

    def __init__(self, cooldown: timedelta = DEFAULT_COOLDOWN,
                 clock: Callable[[], datetime] = datetime.utcnow,
                 on_transition: Optional[Callable[[str], None]] = None):
        self.cooldown = cooldown
        self.clock = clock
        self.on_transition = on_transition
        self._failures: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def record(self, url: str, error: str) -> None:
        """Mark a URL as failed now."""
        with self._lock:
            self._failures[url] = {'url': url, 'failed_at': self.clock(), 'error': error}
        self._report(f"Marked {url} as failed: {error}")

    def should_skip(self, url: str) -> bool:
        """True while the URL is inside its cooldown window."""
        now = self.clock()
        with self._lock:
            failure = self._failures.get(url)
            if failure is None:
                return False
            elapsed = now - failure['failed_at']
            if elapsed < self.cooldown:
                expired = False
            else:
                del self._failures[url]
                expired = True

        if expired:
            self._report(f"Retrying {url}: last failure was {_format_elapsed(elapsed)} ago")
            return False
        self._report(f"Skipping {url} - failed {_format_elapsed(elapsed)} ago: {failure['error']}")
        return True

    def clear(self) -> int:
        """Forget every failure. Returns how many entries were dropped."""
        with self._lock:
            count = len(self._failures)
            self._failures.clear()
        if count:
            self._report(f"Cleared {count} failed feeds")
        return count

    def is_failed(self, url: str) -> bool:
        with self._lock:
            return url in self._failures

    def snapshot(self) -> Dict[str, dict]:
        with self._lock:
            return {
                url: {
                    'url': url,
                    'failed_at': failure['failed_at'].isoformat(),
                    'error': failure['error'],
                }
                for url, failure in self._failures.items()
            }

    def __len__(self):
        with self._lock:
            return len(self._failures)

    def _report(self, message: str) -> None:
        if self.on_transition is not None:
            self.on_transition(message)


def _format_elapsed(elapsed: timedelta) -> str:
    minutes = int(elapsed.total_seconds() // 60)
    if minutes < 60:
        return f"{minutes}m"
    return f"{minutes // 60}h{minutes % 60:02d}m"
