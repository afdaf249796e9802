import threading

from cachetools import TTLCache
from fastapi import Request

from errors import RateLimited


class RateLimiter:
    """Fixed-window counter per key, kept in an LRU cache whose entries expire after `interval` seconds."""

    def __init__(self, limit: int, interval: float = 60, max_tokens: int = 500):
        self.limit = limit
        self._cache = TTLCache(maxsize=max_tokens, ttl=interval)
        self._lock = threading.Lock()

    def check(self, key: str) -> None:
        with self._lock:
            counter = self._cache.get(key)
            if counter is None:
                # window starts on the first hit; later hits must not extend it
                counter = self._cache[key] = [0]
            if counter[0] >= self.limit:
                raise RateLimited()
            counter[0] += 1

    def reset(self) -> None:
        with self._lock:
            self._cache.clear()


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "anonymous"
