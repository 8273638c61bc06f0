import unittest
from itertools import chain, repeat
from unittest.mock import MagicMock, patch

from k8s_client import K8sClient, TERMINATION_LOG_PATH, MOCK_COVERAGE_OUTPUT


def make_pod(name="test-pod", termination_message=None):
    pod = MagicMock()
    pod.metadata.name = name
    if termination_message is not None:
        status = MagicMock()
        status.state.terminated.message = termination_message
        pod.status.container_statuses = [status]
    else:
        pod.status.container_statuses = []
    return pod


class TestK8sClient(unittest.TestCase):
    """Tests for the K8sClient class."""

    @patch('k8s_client.config')
    @patch('k8s_client.client')
    def setUp(self, mock_client, mock_config):
        """Set up test fixtures."""
        # Mock the Kubernetes configuration and API clients
        self.mock_core_v1_api = MagicMock()
        self.mock_batch_v1_api = MagicMock()

        mock_client.CoreV1Api.return_value = self.mock_core_v1_api
        mock_client.BatchV1Api.return_value = self.mock_batch_v1_api

        # Override _test_connection to avoid actual API calls
        with patch.object(K8sClient, '_test_connection', return_value=True):
            self.k8s_client = K8sClient()

    def test_is_connected(self):
        """Test connection check."""
        with patch.object(self.k8s_client, '_test_connection', return_value=True):
            self.assertTrue(self.k8s_client.is_connected())

        with patch.object(self.k8s_client, '_test_connection', side_effect=Exception("Connection error")):
            self.assertFalse(self.k8s_client.is_connected())

    def test_create_job(self):
        """Test creating a coverage Job."""
        result = self.k8s_client.create_job(
            name="cover-golang-1-10",
            image="avelino/cover.run:golang-1.10",
            command=["sh", "-c", "sh /run.sh github.com/acme/widget"],
            env_vars={"VAR": "value"},
            timeout_seconds=300
        )

        self.assertTrue(result.startswith("cover-golang-1-10-"))
        self.mock_batch_v1_api.create_namespaced_job.assert_called_once()

        body = self.mock_batch_v1_api.create_namespaced_job.call_args[1]['body']
        container = body.spec.template.spec.containers[0]
        self.assertEqual(container.image, "avelino/cover.run:golang-1.10")
        self.assertEqual(container.command, ["sh", "-c", "sh /run.sh github.com/acme/widget"])
        self.assertEqual(container.termination_message_path, TERMINATION_LOG_PATH)
        self.assertEqual(body.spec.backoff_limit, 0)
        self.assertEqual(body.spec.active_deadline_seconds, 300)

        # Check for the environment variable
        self.assertEqual(len(container.env), 1)
        self.assertEqual(container.env[0].name, "VAR")
        self.assertEqual(container.env[0].value, "value")

    def test_wait_for_job_completion_success(self):
        """Test waiting for a successful job."""
        mock_job = MagicMock()
        mock_job.status.succeeded = 1
        mock_job.status.failed = None
        self.mock_batch_v1_api.read_namespaced_job_status.return_value = mock_job

        self.mock_core_v1_api.list_namespaced_pod.return_value = MagicMock(items=[make_pod()])
        self.mock_core_v1_api.read_namespaced_pod_log.return_value = "coverage: 80.0% of statements"

        success, stdout, stderr = self.k8s_client.wait_for_job_completion("test-job")

        self.assertTrue(success)
        self.assertEqual(stdout, "coverage: 80.0% of statements")
        self.assertEqual(stderr, "")

        self.mock_batch_v1_api.read_namespaced_job_status.assert_called_once()
        self.mock_core_v1_api.read_namespaced_pod_log.assert_called_once_with(
            name="test-pod",
            namespace=self.k8s_client.namespace
        )

    def test_wait_for_job_completion_failure(self):
        """Test waiting for a failed job collects the termination message."""
        mock_job = MagicMock()
        mock_job.status.succeeded = None
        mock_job.status.failed = 1
        self.mock_batch_v1_api.read_namespaced_job_status.return_value = mock_job

        self.mock_core_v1_api.list_namespaced_pod.return_value = MagicMock(
            items=[make_pod(termination_message="go: cannot find main module")]
        )
        self.mock_core_v1_api.read_namespaced_pod_log.return_value = ""

        success, stdout, stderr = self.k8s_client.wait_for_job_completion("test-job")

        self.assertFalse(success)
        self.assertEqual(stdout, "")
        self.assertEqual(stderr, "go: cannot find main module")

    def test_wait_for_job_completion_no_pods(self):
        """Test a finished job without pods."""
        mock_job = MagicMock()
        mock_job.status.succeeded = None
        mock_job.status.failed = 1
        self.mock_batch_v1_api.read_namespaced_job_status.return_value = mock_job
        self.mock_core_v1_api.list_namespaced_pod.return_value = MagicMock(items=[])

        success, stdout, stderr = self.k8s_client.wait_for_job_completion("test-job")

        self.assertFalse(success)
        self.assertEqual(stdout, "")
        self.assertEqual(stderr, "No pods found for the job")

    @patch('k8s_client.time.sleep')
    def test_wait_for_job_completion_timeout(self, mock_sleep):
        """Test a job that never finishes."""
        mock_job = MagicMock()
        mock_job.status.succeeded = None
        mock_job.status.failed = None
        self.mock_batch_v1_api.read_namespaced_job_status.return_value = mock_job

        with patch('k8s_client.time.time', side_effect=chain([0, 0], repeat(400))):
            with self.assertRaises(TimeoutError):
                self.k8s_client.wait_for_job_completion("test-job", timeout_seconds=300)

        mock_sleep.assert_called_once_with(5)

    def test_delete_job(self):
        """Test deleting a Job."""
        self.k8s_client.delete_job("test-job")

        self.mock_batch_v1_api.delete_namespaced_job.assert_called_once_with(
            name="test-job",
            namespace=self.k8s_client.namespace,
            propagation_policy="Background"
        )


class TestK8sClientMockMode(unittest.TestCase):
    """Tests for the K8sClient mock mode."""

    def test_mock_mode_simulates_coverage_run(self):
        """Test that mock mode returns Go coverage output."""
        k8s_client = K8sClient(mock_mode=True, mock_delay=0)

        job_name = k8s_client.create_job("cover-golang-1-10", "image", ["true"])
        success, stdout, stderr = k8s_client.wait_for_job_completion(job_name)

        self.assertTrue(k8s_client.mock_mode)
        self.assertFalse(k8s_client.is_connected())
        self.assertTrue(success)
        self.assertEqual(stdout, MOCK_COVERAGE_OUTPUT)
        self.assertEqual(stderr, "")


if __name__ == '__main__':
    unittest.main()
