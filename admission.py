"""
Admission control for coverage runs.

The AdmissionGate caps simultaneous runs per service instance. Jobs that
arrive while the gate is full are published on the overflow channel and
picked up later by the Dispatcher.
"""
import logging
import threading

import redis

from config import COVER_Q_MAX, QUEUE_CHANNEL
from errors import CoverRunError
from models import CoverageJobKey

logger = logging.getLogger(__name__)


class AdmissionGate:
    """Thread-safe counting gate with a fixed number of admission tokens."""

    def __init__(self, limit=COVER_Q_MAX):
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self.limit = limit
        self._in_use = 0
        self._cond = threading.Condition()

    @property
    def in_use(self):
        with self._cond:
            return self._in_use

    @property
    def available(self):
        with self._cond:
            return self.limit - self._in_use

    def try_acquire(self):
        """Take a token if one is free. Never blocks."""
        with self._cond:
            if self._in_use >= self.limit:
                return False
            self._in_use += 1
            return True

    def acquire(self, timeout=None):
        """
        Wait for a token.

        Args:
            timeout (float): Seconds to wait, None waits forever

        Returns:
            bool: True if a token was taken
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._in_use < self.limit, timeout=timeout):
                return False
            self._in_use += 1
            return True

    def release(self):
        with self._cond:
            if self._in_use <= 0:
                raise RuntimeError("release called more times than acquire")
            self._in_use -= 1
            self._cond.notify()


class OverflowQueue:
    """
    Best-effort overflow channel on Redis pub/sub.

    Messages are not persisted: a job published while no Dispatcher is
    subscribed is dropped, and the requester picks it up again on its next
    poll because no result ever reaches the cache.
    """

    def __init__(self, redis_client, channel=QUEUE_CHANNEL):
        self.redis = redis_client
        self.channel = channel

    def enqueue(self, key):
        """
        Publish a job key.

        Returns:
            int: Number of subscribers that received the message
        """
        try:
            receivers = self.redis.publish(self.channel, key.to_message())
        except redis.RedisError as e:
            logger.error(f"Failed to queue coverage job {key}: {e}")
            return 0
        if not receivers:
            logger.warning(f"No dispatcher listening, coverage job {key} dropped")
        return receivers


class Dispatcher:
    """
    Background consumer of the overflow channel.

    Jobs are run one at a time on the dispatcher thread, each only after a
    token has been taken from the AdmissionGate, so queued work never pushes
    an instance past its concurrency limit.
    """

    def __init__(self, redis_client, registry, cache, gate, run_job,
                 channel=QUEUE_CHANNEL, poll_interval=1.0, retry_delay=5.0):
        """
        Initialize the dispatcher.

        Args:
            redis_client: Redis client used for the subscription
            registry (InProgressRegistry): Active run registry
            cache (ResultCache): Result cache
            gate (AdmissionGate): Gate shared with the orchestrator
            run_job (callable): ``run_job(key, admitted=True)``; must release
                the admission token when it finishes
            channel (str): Overflow channel name
            poll_interval (float): Seconds between checks for stop requests
            retry_delay (float): Seconds to wait before resubscribing after
                a bus error
        """
        self.redis = redis_client
        self.registry = registry
        self.cache = cache
        self.gate = gate
        self.run_job = run_job
        self.channel = channel
        self.poll_interval = poll_interval
        self.retry_delay = retry_delay
        self._stop = threading.Event()
        self._thread = None

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="cover-dispatcher", daemon=True)
        self._thread.start()
        logger.info(f"Dispatcher listening on {self.channel}")

    def stop(self, timeout=None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self):
        while not self._stop.is_set():
            pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
            try:
                pubsub.subscribe(self.channel)
                while not self._stop.is_set():
                    message = pubsub.get_message(timeout=self.poll_interval)
                    if message is None or message.get('type') != 'message':
                        continue
                    self.handle_message(message['data'])
            except redis.RedisError as e:
                logger.error(f"Overflow subscription failed: {e}")
                self._stop.wait(self.retry_delay)
            finally:
                pubsub.close()

    def handle_message(self, data):
        """
        Run one queued job unless it is already running or cached.

        Returns:
            bool: True if the job was run
        """
        try:
            key = CoverageJobKey.from_message(data)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring malformed overflow message {data!r}: {e}")
            return False

        if self.registry.is_set(key):
            logger.debug(f"Queued job {key} already in progress")
            return False
        if self.cache.get(key) is not None:
            logger.debug(f"Queued job {key} already has a cached result")
            return False

        while not self.gate.acquire(timeout=self.poll_interval):
            if self._stop.is_set():
                return False

        if not self.registry.try_set(key):
            self.gate.release()
            return False

        # A direct run may have cached a result while we waited for a token
        if self.cache.get(key) is not None:
            logger.debug(f"Queued job {key} was covered while waiting for admission")
            self.registry.clear(key)
            self.gate.release()
            return False

        logger.info(f"Running queued coverage job {key}")
        try:
            self.run_job(key, admitted=True)
        except CoverRunError as e:
            logger.info(f"Queued coverage job {key} finished with error: {e}")
        except Exception:
            logger.exception(f"Unexpected failure running queued job {key}")
        return True
