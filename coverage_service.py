"""
Coverage job orchestration.

``CoverageService.resolve`` decides what a single request gets: a cached
result, a note that a run is active, a freshly admitted run, or a place on
the overflow queue. Runs themselves happen off the request path.

Only one run per (repository, tag) is started by this service at a time: a
job is claimed in the InProgressRegistry before its run starts and released
after its result is cached. The claim is atomic within Redis, but the cache
and registry lookups before it are not, so two instances can still race on
a brand new key. A duplicate run only wastes work; the last result written
wins.
"""
import logging
from concurrent.futures import ThreadPoolExecutor

from config import SUPPORTED_TOOLCHAINS, COVER_IMAGE_REPO, RECENT_LIMIT
from errors import CoverRunError, RunnerError
from models import CoverageJobKey, CoverageResult, Outcome
from utils import parse_coverage, parse_percent, format_percent

logger = logging.getLogger(__name__)

IN_PROGRESS_MESSAGE = "Coverage run in progress"
QUEUED_MESSAGE = "Coverage run queued"
NO_TESTS_MESSAGE = "No tests found"


def unsupported_message(tag):
    return (f"Sorry, docker image not found, {COVER_IMAGE_REPO}:{tag}, "
            f"see Supported languages: https://github.com/avelino/cover.run#supported")


def build_result(key, stdout, stderr, error=None):
    """
    Turn runner output into a CoverageResult.

    Non-empty standard output is authoritative and is parsed for coverage
    figures, even when the run itself failed. Otherwise the error stream (or
    the error message) becomes the result text.
    """
    out = (stdout or '').strip()
    if out:
        return CoverageResult(key.repository, key.tag, parse_coverage(out), has_output=True)

    err = (stderr or '').strip()
    if error is not None:
        return CoverageResult(key.repository, key.tag, err or str(error), error=error.outcome)
    if err:
        return CoverageResult(key.repository, key.tag, err, error=Outcome.unknown_error)
    return CoverageResult(key.repository, key.tag, NO_TESTS_MESSAGE, error=Outcome.no_tests_found)


class CoverageService:
    """Orchestrates coverage runs for (repository, toolchain tag) jobs."""

    def __init__(self, runner, cache, registry, gate, queue, executor=None, toolchains=None):
        """
        Initialize the coverage service.

        Args:
            runner (RunnerService): Executes coverage containers
            cache (ResultCache): Cached coverage results
            registry (InProgressRegistry): Jobs with an active run
            gate (AdmissionGate): Per-instance run limit
            queue (OverflowQueue): Where jobs go when the gate is full
            executor (Executor): Runs admitted jobs in the background
            toolchains (dict): Supported toolchains, defaults to the configured set
        """
        self.runner = runner
        self.cache = cache
        self.registry = registry
        self.gate = gate
        self.queue = queue
        self.executor = executor or ThreadPoolExecutor(
            max_workers=gate.limit,
            thread_name_prefix="cover-run"
        )
        self.toolchains = SUPPORTED_TOOLCHAINS if toolchains is None else toolchains

    def is_supported(self, tag):
        return tag in self.toolchains

    def resolve(self, repo, tag):
        """
        Resolve the coverage of a repository without waiting for a run.

        Args:
            repo (str): Repository path
            tag (str): Toolchain tag

        Returns:
            tuple: (CoverageResult, Outcome)
        """
        key = CoverageJobKey(repo, tag)

        if not self.is_supported(tag):
            logger.info(f"Rejected unsupported toolchain {tag} for {repo}")
            result = CoverageResult(repo, tag, unsupported_message(tag),
                                    error=Outcome.unsupported_toolchain)
            return result, Outcome.unsupported_toolchain

        cached = self.cache.get(key)
        if cached is not None:
            return cached, cached.error or Outcome.ready

        if self.registry.is_set(key):
            logger.debug(f"Coverage run already in progress for {key}")
            return self._placeholder(key, IN_PROGRESS_MESSAGE), Outcome.in_progress

        if self.gate.try_acquire():
            if not self.registry.try_set(key):
                self.gate.release()
                return self._placeholder(key, IN_PROGRESS_MESSAGE), Outcome.in_progress
            try:
                self.submit(key)
            except RuntimeError as e:
                # Executor is shutting down
                logger.warning(f"Could not start coverage run for {key}: {e}")
                self.registry.clear(key)
                self.gate.release()
            else:
                logger.info(f"Started coverage run for {key}")
                return self._placeholder(key, IN_PROGRESS_MESSAGE), Outcome.in_progress

        self.queue.enqueue(key)
        logger.debug(f"Queued coverage run for {key}")
        return self._placeholder(key, QUEUED_MESSAGE), Outcome.queued

    @staticmethod
    def _placeholder(key, message):
        return CoverageResult(key.repository, key.tag, message)

    def submit(self, key):
        """Run an admitted job in the background. The future is not kept."""
        self.executor.submit(self._run_detached, key)

    def _run_detached(self, key):
        try:
            self.cover(key.repository, key.tag, admitted=True)
        except CoverRunError as e:
            logger.debug(f"Background coverage run for {key} ended with: {e}")

    def run_job(self, key, admitted=True):
        """Dispatcher entry point: run a queued job and cache its result."""
        return self.cover(key.repository, key.tag, admitted=admitted)

    def cover(self, repo, tag, admitted=False):
        """
        Run coverage for a repository and cache the result.

        The in-progress marker is cleared and the admission token released
        on every exit path. A runner failure is cached as error text and
        then raised again.

        Args:
            repo (str): Repository path
            tag (str): Toolchain tag
            admitted (bool): Whether the caller holds an admission token

        Returns:
            CoverageResult: The cached result

        Raises:
            CoverRunError: If the run failed
        """
        key = CoverageJobKey(repo, tag)
        error = None
        stdout = stderr = ""

        self.registry.set(key)
        try:
            try:
                stdout, stderr = self.runner.execute(tag, repo)
            except CoverRunError as e:
                logger.error(f"Coverage run for {key} failed: {e}")
                error = e
                stdout, stderr = e.stdout, e.stderr
            except Exception as e:
                logger.exception(f"Unexpected error running coverage for {key}")
                error = RunnerError(f"Coverage run failed: {e}")

            result = build_result(key, stdout, stderr, error)
            self.cache.set(result)
        finally:
            self.registry.clear(key)
            if admitted:
                self.gate.release()

        if error is not None:
            raise error
        return result

    def recent_results(self, limit=RECENT_LIMIT):
        """Recently cached results that hold a real coverage figure."""
        return self.cache.recent(limit)

    def badge_status(self, repo, tag):
        """
        Pick the badge color and status text for a repository.

        Returns:
            tuple: (str, str) - (color name, status text)
        """
        result, outcome = self.resolve(repo, tag)

        if outcome == Outcome.queued:
            return "lightgrey", "queued"
        if outcome == Outcome.in_progress:
            return "yellowgreen", "testing"
        if outcome == Outcome.unsupported_toolchain:
            return "lightgrey", "unsupported"
        if outcome == Outcome.no_tests_found:
            return "lightgrey", "no tests"

        percent = parse_percent(result.coverage_text)
        if percent is None:
            return "red", "error"

        if percent >= 70:
            color = "green"
        elif percent >= 45:
            color = "yellow"
        else:
            color = "red"
        return color, format_percent(percent)
