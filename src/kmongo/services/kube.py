"""Kubernetes object store used by the reconcile core."""

import base64
import logging

import kubernetes
from kubernetes.client.exceptions import ApiException
from kubernetes.stream import stream

from kmongo.errors import ExecError
from kmongo.models.mongodb import GROUP, PLURAL, VERSION

logger = logging.getLogger(__name__)


def load_kube_config():
    """In-cluster config first, local kubeconfig otherwise."""
    try:
        kubernetes.config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except kubernetes.config.ConfigException:
        kubernetes.config.load_kube_config()
        logger.info("Loaded local Kubernetes config")


def label_selector(labels):
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


def decode_secret(secret):
    """Secret data with values base64 decoded."""
    return {
        k: base64.b64decode(v).decode() for k, v in (secret.data or {}).items()
    }


class KubeStore:
    """Narrow wrapper over the core, apps and custom objects APIs.

    Getters return None on 404; every other ApiException propagates.
    """

    def __init__(self, core_api=None, apps_api=None, custom_api=None, timeout=30):
        self.core = core_api or kubernetes.client.CoreV1Api()
        self.apps = apps_api or kubernetes.client.AppsV1Api()
        self.custom = custom_api or kubernetes.client.CustomObjectsApi()
        self.timeout = timeout

    def _get(self, read, *args):
        try:
            return read(*args, _request_timeout=self.timeout)
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    # pods

    def list_pods(self, namespace, labels):
        resp = self.core.list_namespaced_pod(
            namespace, label_selector=label_selector(labels), _request_timeout=self.timeout
        )
        return list(resp.items)

    def delete_pod(self, namespace, name):
        try:
            self.core.delete_namespaced_pod(name, namespace, _request_timeout=self.timeout)
        except ApiException as e:
            if e.status != 404:
                raise
        logger.info(f"Deleted pod {namespace}/{name}")

    def exec_command(self, pod, container, command):
        """Run a shell command in a container.

        Returns stdout. Raises ExecError carrying stdout and stderr when the
        command exits non-zero.
        """
        resp = stream(
            self.core.connect_get_namespaced_pod_exec,
            pod.metadata.name,
            pod.metadata.namespace,
            container=container,
            command=["/bin/sh", "-c", command],
            stderr=True,
            stdin=False,
            stdout=True,
            tty=False,
            _preload_content=False,
        )
        stdout, stderr = [], []
        try:
            resp.run_forever(timeout=self.timeout)
            stdout.append(resp.read_stdout() or "")
            stderr.append(resp.read_stderr() or "")
        finally:
            resp.close()

        out, err = "".join(stdout), "".join(stderr)
        if resp.returncode:
            raise ExecError(
                f"command in {pod.metadata.name} exited with {resp.returncode}: {err.strip()}",
                stdout=out,
                stderr=err,
            )
        return out

    # statefulsets

    def list_statefulsets(self, namespace, labels):
        resp = self.apps.list_namespaced_stateful_set(
            namespace, label_selector=label_selector(labels), _request_timeout=self.timeout
        )
        return list(resp.items)

    def get_statefulset(self, namespace, name):
        return self._get(self.apps.read_namespaced_stateful_set, name, namespace)

    def create_statefulset(self, namespace, body):
        return self.apps.create_namespaced_stateful_set(
            namespace, body, _request_timeout=self.timeout
        )

    def patch_statefulset(self, namespace, name, body):
        return self.apps.patch_namespaced_stateful_set(
            name, namespace, body, _request_timeout=self.timeout
        )

    def delete_statefulset(self, namespace, name):
        try:
            self.apps.delete_namespaced_stateful_set(name, namespace, _request_timeout=self.timeout)
        except ApiException as e:
            if e.status != 404:
                raise
        logger.info(f"Deleted statefulset {namespace}/{name}")

    # services

    def list_services(self, namespace, labels):
        resp = self.core.list_namespaced_service(
            namespace, label_selector=label_selector(labels), _request_timeout=self.timeout
        )
        return list(resp.items)

    def get_service(self, namespace, name):
        return self._get(self.core.read_namespaced_service, name, namespace)

    def create_service(self, namespace, body):
        return self.core.create_namespaced_service(namespace, body, _request_timeout=self.timeout)

    def delete_service(self, namespace, name):
        try:
            self.core.delete_namespaced_service(name, namespace, _request_timeout=self.timeout)
        except ApiException as e:
            if e.status != 404:
                raise
        logger.info(f"Deleted service {namespace}/{name}")

    # configmaps and secrets

    def get_config_map(self, namespace, name):
        return self._get(self.core.read_namespaced_config_map, name, namespace)

    def replace_config_map(self, namespace, name, body):
        return self.core.replace_namespaced_config_map(
            name, namespace, body, _request_timeout=self.timeout
        )

    def get_secret(self, namespace, name):
        return self._get(self.core.read_namespaced_secret, name, namespace)

    def create_secret(self, namespace, body):
        return self.core.create_namespaced_secret(namespace, body, _request_timeout=self.timeout)

    # MongoDB objects

    def get_mongodb(self, namespace, name):
        return self._get(
            self.custom.get_namespaced_custom_object, GROUP, VERSION, namespace, PLURAL, name
        )

    def replace_mongodb_status(self, namespace, name, body):
        return self.custom.replace_namespaced_custom_object_status(
            GROUP, VERSION, namespace, PLURAL, name, body, _request_timeout=self.timeout
        )
