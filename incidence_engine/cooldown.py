import logging
import time
from threading import Lock, Timer

logger = logging.getLogger("incidence_engine.cooldown")


def pair_key(device_id, beacon_id):
    return (str(device_id), str(beacon_id))


class CooldownTracker:
    """
    Process-local gate keyed by (device, beacon).

    try_acquire() is a single check-and-insert under the lock. Entries are
    removed by a timer once the window elapses; an entry past its deadline
    is also treated as gone even if its timer has not run yet.
    """

    def __init__(self, duration_seconds=35, clock=time.monotonic, use_timers=True):
        self.duration = float(duration_seconds)
        self._clock = clock
        self._use_timers = use_timers
        self._entries = {}
        self._lock = Lock()

    def try_acquire(self, key) -> bool:
        now = self._clock()
        with self._lock:
            row = self._entries.get(key)
            if row and row["expires_at"] > now:
                return False
            if row and row["timer"]:
                row["timer"].cancel()

            row = {
                "acquired_at": now,
                "expires_at": now + self.duration,
                "timer": None,
            }
            if self._use_timers:
                t = Timer(self.duration, self._expire, args=(key, row))
                t.daemon = True
                row["timer"] = t
            self._entries[key] = row

        if row["timer"]:
            row["timer"].start()
        logger.debug("Cooldown armed for %s (%ss)", key, self.duration)
        return True

    def _expire(self, key, row):
        with self._lock:
            # only drop the entry this timer was armed for
            if self._entries.get(key) is row:
                self._entries.pop(key, None)
                logger.debug("Cooldown removed for %s", key)

    def release(self, key):
        with self._lock:
            row = self._entries.pop(key, None)
        if row and row["timer"]:
            row["timer"].cancel()

    def is_active(self, key) -> bool:
        now = self._clock()
        with self._lock:
            row = self._entries.get(key)
            return bool(row and row["expires_at"] > now)

    def clear(self):
        with self._lock:
            rows = list(self._entries.values())
            self._entries.clear()
        for row in rows:
            if row["timer"]:
                row["timer"].cancel()

    def __len__(self):
        with self._lock:
            return len(self._entries)
