"""
Errors raised while running coverage jobs.

Every error carries whatever output the runner captured before failing, so
the pipeline can still cache a result for the job.
"""
from models import Outcome


class CoverRunError(Exception):
    """Base class for coverage run failures."""

    outcome = Outcome.unknown_error
    default_message = "Unknown error occurred"

    def __init__(self, message=None, stdout="", stderr=""):
        super().__init__(message or self.default_message)
        self.stdout = stdout or ""
        self.stderr = stderr or ""


class UnsupportedToolchainError(CoverRunError):
    outcome = Outcome.unsupported_toolchain
    default_message = "Unsupported Go version provided"


class RepositoryNotFoundError(CoverRunError):
    outcome = Outcome.repo_not_found
    default_message = "Repository not found"


class UnknownUpstreamError(CoverRunError):
    outcome = Outcome.unknown_error
    default_message = "Unknown error occurred"


class RunnerError(CoverRunError):
    """The coverage container failed or could not be started."""

    default_message = "Coverage run failed"


class RunnerTimeoutError(RunnerError):
    default_message = "Coverage run timed out"
