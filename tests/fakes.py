"""
Test doubles shared by the test modules.
"""
import fnmatch
import threading


class InMemoryRedis:
    """Thread-safe stand-in for the subset of the Redis API the service uses."""

    def __init__(self):
        self.values = {}
        self.ttls = {}
        self.hashes = {}
        self.published = []
        self.subscribers = 1
        self._lock = threading.Lock()

    def ping(self):
        return True

    def get(self, key):
        with self._lock:
            return self.values.get(key)

    def set(self, key, value, ex=None):
        with self._lock:
            self.values[key] = value
            if ex is not None:
                self.ttls[key] = ex
            else:
                self.ttls.pop(key, None)
            return True

    def scan_iter(self, match=None, count=None):
        with self._lock:
            keys = list(self.values)
        for key in keys:
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    def hget(self, name, field):
        with self._lock:
            value = self.hashes.get(name, {}).get(field)
            return None if value is None else str(value)

    def hset(self, name, field, value):
        with self._lock:
            self.hashes.setdefault(name, {})[field] = value
            return 1

    def hsetnx(self, name, field, value):
        with self._lock:
            fields = self.hashes.setdefault(name, {})
            if field in fields:
                return False
            fields[field] = value
            return True

    def hdel(self, name, *fields):
        with self._lock:
            removed = 0
            for field in fields:
                if self.hashes.get(name, {}).pop(field, None) is not None:
                    removed += 1
            return removed

    def publish(self, channel, message):
        with self._lock:
            self.published.append((channel, message))
            return self.subscribers


class ImmediateExecutor:
    """Executor that runs submitted work on the calling thread."""

    def __init__(self):
        self.calls = 0

    def submit(self, fn, *args, **kwargs):
        self.calls += 1
        fn(*args, **kwargs)
