import unittest
from unittest.mock import MagicMock, patch

import httpx

from errors import (
    UnsupportedToolchainError,
    RepositoryNotFoundError,
    UnknownUpstreamError,
    RunnerError,
    RunnerTimeoutError,
)
from runner_service import RunnerService, job_name_prefix

TOOLCHAINS = {
    'golang-1.10': {
        'image': 'avelino/cover.run:golang-1.10',
    }
}

REPO = 'github.com/acme/widget'


class TestRunnerService(unittest.TestCase):
    """Tests for the RunnerService class."""

    def setUp(self):
        """Set up test fixtures."""
        self.k8s_client = MagicMock()
        self.http_client = MagicMock()
        self.http_client.get.return_value = MagicMock(status_code=200)
        self.runner_service = RunnerService(self.k8s_client, http_client=self.http_client, timeout_seconds=300)

    def test_execute_unsupported_toolchain(self):
        """Test running coverage with an unsupported toolchain."""
        with self.assertRaises(UnsupportedToolchainError):
            self.runner_service.execute('golang-1.0', REPO)

        self.http_client.get.assert_not_called()
        self.k8s_client.create_job.assert_not_called()

    @patch('runner_service.SUPPORTED_TOOLCHAINS', TOOLCHAINS)
    def test_execute_success(self):
        """Test a successful coverage run."""
        self.k8s_client.create_job.return_value = 'cover-golang-1-10-abc'
        self.k8s_client.wait_for_job_completion.return_value = (
            True,
            'ok  \tgithub.com/acme/widget\t0.01s\tcoverage: 80.0% of statements\n',
            ''
        )

        stdout, stderr = self.runner_service.execute('golang-1.10', REPO)

        self.assertIn('coverage: 80.0%', stdout)
        self.assertEqual(stderr, '')

        self.http_client.get.assert_called_once_with(f'https://{REPO}')
        self.k8s_client.create_job.assert_called_once()
        kwargs = self.k8s_client.create_job.call_args[1]
        self.assertEqual(kwargs['name'], 'cover-golang-1-10')
        self.assertEqual(kwargs['image'], 'avelino/cover.run:golang-1.10')
        self.assertEqual(kwargs['timeout_seconds'], 300)
        self.assertIn(f'sh /run.sh {REPO}', kwargs['command'][2])
        self.k8s_client.wait_for_job_completion.assert_called_once_with(
            'cover-golang-1-10-abc',
            timeout_seconds=300
        )

    @patch('runner_service.SUPPORTED_TOOLCHAINS', TOOLCHAINS)
    def test_execute_repository_not_found(self):
        """Test that a 404 probe stops before any job is created."""
        self.http_client.get.return_value = MagicMock(status_code=404)

        with self.assertRaises(RepositoryNotFoundError):
            self.runner_service.execute('golang-1.10', REPO)

        self.k8s_client.create_job.assert_not_called()

    @patch('runner_service.SUPPORTED_TOOLCHAINS', TOOLCHAINS)
    def test_execute_upstream_error(self):
        """Test that other error statuses map to an unknown upstream error."""
        self.http_client.get.return_value = MagicMock(status_code=503)

        with self.assertRaises(UnknownUpstreamError):
            self.runner_service.execute('golang-1.10', REPO)

        self.k8s_client.create_job.assert_not_called()

    @patch('runner_service.SUPPORTED_TOOLCHAINS', TOOLCHAINS)
    def test_execute_probe_transport_error(self):
        """Test that an unreachable host maps to an unknown upstream error."""
        self.http_client.get.side_effect = httpx.ConnectError("connection refused")

        with self.assertRaises(UnknownUpstreamError):
            self.runner_service.execute('golang-1.10', REPO)

    @patch('runner_service.SUPPORTED_TOOLCHAINS', TOOLCHAINS)
    def test_execute_failure_keeps_output(self):
        """Test that a failed job raises with the captured output attached."""
        self.k8s_client.create_job.return_value = 'cover-golang-1-10-abc'
        self.k8s_client.wait_for_job_completion.return_value = (
            False,
            'coverage: 40.0% of statements\nFAIL',
            'exit status 1'
        )

        with self.assertRaises(RunnerError) as ctx:
            self.runner_service.execute('golang-1.10', REPO)

        self.assertEqual(ctx.exception.stdout, 'coverage: 40.0% of statements\nFAIL')
        self.assertEqual(ctx.exception.stderr, 'exit status 1')

    @patch('runner_service.SUPPORTED_TOOLCHAINS', TOOLCHAINS)
    def test_execute_timeout(self):
        """Test that a timed out job is deleted and reported."""
        self.k8s_client.create_job.return_value = 'cover-golang-1-10-abc'
        self.k8s_client.wait_for_job_completion.side_effect = TimeoutError('too slow')

        with self.assertRaises(RunnerTimeoutError):
            self.runner_service.execute('golang-1.10', REPO)

        self.k8s_client.delete_job.assert_called_once_with('cover-golang-1-10-abc')

    def test_job_name_prefix(self):
        """Test job names are valid Kubernetes names."""
        self.assertEqual(job_name_prefix('golang-1.10'), 'cover-golang-1-10')
        self.assertEqual(job_name_prefix('Go_1.9'), 'cover-go-1-9')
        self.assertEqual(job_name_prefix('...'), 'cover')


if __name__ == '__main__':
    unittest.main()
