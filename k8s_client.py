import os
import logging
import uuid
import time
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from config import DEFAULT_NAMESPACE, JOB_TTL_SECONDS

logger = logging.getLogger(__name__)

# Container path whose content Kubernetes reports as the termination message
TERMINATION_LOG_PATH = "/dev/termination-log"

MOCK_COVERAGE_OUTPUT = (
    "ok  \tmock/pkg\t0.012s\tcoverage: 82.4% of statements\n"
    "ok  \tmock/pkg/sub\t0.008s\tcoverage: 64.2% of statements\n"
)


class K8sClient:
    """Client for running coverage containers as Kubernetes Jobs."""

    def __init__(self, mock_mode=False, mock_delay=1):
        """
        Initialize the Kubernetes client.

        Args:
            mock_mode (bool): If True, run in mock mode without connecting to K8s
            mock_delay (float): Simulated run time in mock mode (seconds)
        """
        self.mock_mode = mock_mode or os.environ.get("K8S_MOCK_MODE", "").lower() in ("true", "1", "yes")
        self.mock_delay = mock_delay

        if self.mock_mode:
            logger.info("Initializing Kubernetes client in mock mode")
            self._init_mock()
            return

        try:
            # Try to load in-cluster config first (when running inside K8s)
            config.load_incluster_config()
            logger.info("Using in-cluster Kubernetes configuration")
        except config.ConfigException:
            try:
                # Fall back to kubeconfig file
                config.load_kube_config()
                logger.info("Using kubeconfig file for Kubernetes configuration")
            except config.ConfigException:
                logger.error("Failed to load Kubernetes configuration")
                self.mock_mode = True
                logger.warning("Falling back to mock mode")
                self._init_mock()
                return

        self.core_v1_api = client.CoreV1Api()
        self.batch_v1_api = client.BatchV1Api()

        self.namespace = os.environ.get("K8S_NAMESPACE", DEFAULT_NAMESPACE)
        logger.info(f"Using Kubernetes namespace: {self.namespace}")

        try:
            self._test_connection()
        except Exception as e:
            logger.error(f"Failed to connect to Kubernetes API: {e}")
            self.mock_mode = True
            logger.warning("Falling back to mock mode")

    def _init_mock(self):
        self.core_v1_api = None
        self.batch_v1_api = None
        self.namespace = "mock-namespace"

    def _test_connection(self):
        """Test connection to Kubernetes API."""
        try:
            self.core_v1_api.list_namespaced_pod(namespace=self.namespace, limit=1)
            return True
        except ApiException as e:
            logger.error(f"Kubernetes API connection test failed: {e}")
            raise

    def is_connected(self):
        """Check if connected to Kubernetes API."""
        if self.mock_mode:
            return False

        try:
            self._test_connection()
            return True
        except Exception:
            return False

    def create_job(self, name, image, command, env_vars=None, timeout_seconds=300):
        """
        Create a Kubernetes Job running one coverage container.

        Args:
            name (str): Name prefix for the job
            image (str): Container image to use
            command (list): Command to run in the container
            env_vars (dict): Environment variables
            timeout_seconds (int): Job timeout in seconds

        Returns:
            str: Name of the created job
        """
        job_name = f"{name}-{str(uuid.uuid4())[:8]}"

        if self.mock_mode:
            logger.info(f"Mock mode: Simulating job creation: {job_name}")
            return job_name

        container = client.V1Container(
            name="cover-runner",
            image=image,
            command=command,
            env=[client.V1EnvVar(name=k, value=v) for k, v in (env_vars or {}).items()],
            termination_message_path=TERMINATION_LOG_PATH,
            termination_message_policy="File",
        )

        job_spec = client.V1JobSpec(
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels={"app": job_name}),
                spec=client.V1PodSpec(
                    containers=[container],
                    restart_policy="Never",
                )
            ),
            backoff_limit=0,  # Don't retry on failure
            ttl_seconds_after_finished=JOB_TTL_SECONDS,
            active_deadline_seconds=timeout_seconds
        )

        job = client.V1Job(
            api_version="batch/v1",
            kind="Job",
            metadata=client.V1ObjectMeta(name=job_name),
            spec=job_spec
        )

        logger.info(f"Creating Kubernetes job: {job_name}")
        try:
            self.batch_v1_api.create_namespaced_job(
                namespace=self.namespace,
                body=job
            )
            return job_name
        except ApiException as e:
            logger.error(f"Failed to create job: {e}")
            raise

    def wait_for_job_completion(self, job_name, timeout_seconds=300, check_interval=5):
        """
        Wait for a job to finish and collect its output.

        Args:
            job_name (str): Name of the job
            timeout_seconds (int): Maximum time to wait
            check_interval (int): Time between status checks

        Returns:
            tuple: (bool, str, str) - (success, stdout, stderr)

        Raises:
            TimeoutError: If the job has not finished within timeout_seconds
        """
        logger.info(f"Waiting for job completion: {job_name}")

        if self.mock_mode:
            logger.info(f"Mock mode: Simulating successful job completion: {job_name}")
            time.sleep(self.mock_delay)
            return True, MOCK_COVERAGE_OUTPUT, ""

        start_time = time.time()

        while time.time() - start_time < timeout_seconds:
            try:
                job = self.batch_v1_api.read_namespaced_job_status(
                    name=job_name,
                    namespace=self.namespace
                )
            except ApiException as e:
                logger.error(f"Error checking job status: {e}")
                raise

            if job.status.succeeded is not None and job.status.succeeded > 0:
                logger.info(f"Job completed successfully: {job_name}")
                stdout, stderr = self._get_pod_output_for_job(job_name)
                return True, stdout, stderr

            if job.status.failed is not None and job.status.failed > 0:
                logger.warning(f"Job failed: {job_name}")
                stdout, stderr = self._get_pod_output_for_job(job_name)
                return False, stdout, stderr

            logger.debug(f"Job still running: {job_name}")
            time.sleep(check_interval)

        logger.error(f"Timeout waiting for job completion: {job_name}")
        raise TimeoutError(f"Job {job_name} did not finish within {timeout_seconds}s")

    def _get_pod_output_for_job(self, job_name):
        """
        Get the output of the pod created by the job.

        Standard output comes from the pod log. Standard error is written
        to the termination log by the container command and read back from
        the terminated container state.

        Args:
            job_name (str): Name of the job

        Returns:
            tuple: (str, str) - (stdout, stderr)
        """
        try:
            pod_list = self.core_v1_api.list_namespaced_pod(
                namespace=self.namespace,
                label_selector=f"app={job_name}"
            )

            if not pod_list.items:
                return "", "No pods found for the job"

            pod = pod_list.items[0]
            logs = self.core_v1_api.read_namespaced_pod_log(
                name=pod.metadata.name,
                namespace=self.namespace
            )
            return logs or "", self._termination_message(pod)
        except ApiException as e:
            logger.error(f"Error getting pod output: {e}")
            return "", f"Error retrieving logs: {e}"

    @staticmethod
    def _termination_message(pod):
        statuses = (pod.status and pod.status.container_statuses) or []
        for status in statuses:
            terminated = status.state and status.state.terminated
            if terminated is not None and terminated.message:
                return terminated.message
        return ""

    def delete_job(self, name):
        """Delete a job together with its pods."""
        if self.mock_mode:
            logger.info(f"Mock mode: Simulating job deletion: {name}")
            return

        try:
            self.batch_v1_api.delete_namespaced_job(
                name=name,
                namespace=self.namespace,
                propagation_policy="Background"
            )
            logger.info(f"Deleted job: {name}")
        except ApiException as e:
            logger.warning(f"Failed to delete job {name}: {e}")
            # We don't raise here because this is cleanup code
