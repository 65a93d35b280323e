import threading
import time


def make_cache_key(signal_type: str, subject, span, vertical=None) -> str:
    """
    Deterministic key for external-factor and forecast caching.
    `subject` is a location or product id, `span` a (start, end) date range or a horizon.
    """
    if isinstance(span, (tuple, list)):
        span = "..".join(str(part) for part in span)
    subject = str(subject).strip().lower()
    vertical = getattr(vertical, "value", vertical)
    return f"{signal_type}:{subject}:{span}:{vertical or '-'}"


class TTLCache:
    """In-memory cache with per-entry expiry, safe for concurrent request threads."""

    def __init__(self, default_ttl: int = 3600, clock=time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries = {}  # key -> (value, expires_at)
        self._lock = threading.Lock()
        self.stats = {"hits": 0, "misses": 0, "sets": 0}

    def get(self, key, default=None):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.stats["misses"] += 1
                return default
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._entries[key]
                self.stats["misses"] += 1
                return default
            self.stats["hits"] += 1
            return value

    def set(self, key, value, ttl: int | None = None):
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)
            self.stats["sets"] += 1

    def delete(self, key) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            now = self._clock()
            return sum(1 for _, expires_at in self._entries.values() if expires_at > now)
