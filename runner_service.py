import logging
import re
import shlex

import httpx
from kubernetes.client.rest import ApiException

from config import SUPPORTED_TOOLCHAINS, RUN_TIMEOUT_SECONDS, PROBE_TIMEOUT_SECONDS
from errors import (
    UnsupportedToolchainError,
    RepositoryNotFoundError,
    UnknownUpstreamError,
    RunnerError,
    RunnerTimeoutError,
)
from k8s_client import TERMINATION_LOG_PATH

logger = logging.getLogger(__name__)


class RunnerService:
    """Service for running coverage containers in Kubernetes."""

    def __init__(self, k8s_client, http_client=None, timeout_seconds=RUN_TIMEOUT_SECONDS):
        """
        Initialize the runner service.

        Args:
            k8s_client: Kubernetes client instance
            http_client (httpx.Client): Client for the repository probe
            timeout_seconds (int): Wall-clock limit for one run
        """
        self.k8s_client = k8s_client
        self.http_client = http_client or httpx.Client(
            timeout=PROBE_TIMEOUT_SECONDS,
            follow_redirects=True
        )
        self.timeout_seconds = timeout_seconds

    def probe_repository(self, repo):
        """
        Check that the repository is reachable over HTTPS.

        Args:
            repo (str): Repository path, e.g. github.com/user/repo

        Raises:
            RepositoryNotFoundError: If the host answers 404
            UnknownUpstreamError: For any other error status or transport failure
        """
        try:
            response = self.http_client.get(f"https://{repo}")
        except httpx.HTTPError as e:
            logger.warning(f"Repository probe failed for {repo}: {e}")
            raise UnknownUpstreamError(f"Unable to reach {repo}: {e}")

        if response.status_code == 404:
            raise RepositoryNotFoundError()
        if response.status_code > 399:
            raise UnknownUpstreamError()

    def execute(self, tag, repo):
        """
        Run the coverage container for a repository.

        Args:
            tag (str): Toolchain tag
            repo (str): Repository path

        Returns:
            tuple: (str, str) - (stdout, stderr)

        Raises:
            CoverRunError: Any failure; the captured output is attached
        """
        if tag not in SUPPORTED_TOOLCHAINS:
            raise UnsupportedToolchainError()

        self.probe_repository(repo)

        image = SUPPORTED_TOOLCHAINS[tag]['image']
        command = [
            "sh",
            "-c",
            f"sh /run.sh {shlex.quote(repo)} 2>{TERMINATION_LOG_PATH}"
        ]

        try:
            job_name = self.k8s_client.create_job(
                name=job_name_prefix(tag),
                image=image,
                command=command,
                timeout_seconds=self.timeout_seconds
            )
        except ApiException as e:
            raise RunnerError(f"Unable to start coverage job: {e.reason}")

        try:
            success, stdout, stderr = self.k8s_client.wait_for_job_completion(
                job_name,
                timeout_seconds=self.timeout_seconds
            )
        except TimeoutError:
            self.k8s_client.delete_job(job_name)
            raise RunnerTimeoutError(
                f"Coverage run for {repo} timed out after {self.timeout_seconds}s"
            )
        except ApiException as e:
            raise RunnerError(f"Lost track of coverage job {job_name}: {e.reason}")

        if not success:
            raise RunnerError(
                f"Coverage job {job_name} failed",
                stdout=stdout,
                stderr=stderr
            )
        return stdout, stderr


def job_name_prefix(tag):
    """Build a DNS-1123 compatible job name prefix for a toolchain tag."""
    slug = re.sub(r'[^a-z0-9-]+', '-', tag.lower()).strip('-')
    return f"cover-{slug}" if slug else "cover"
