"""Rolling restart driven by status.restartState.

Each call advances at most one phase, so a restart spans several reconcile
passes and survives operator restarts:

    NotInProcess -> SecondaryDeleted -> PrimaryDeleted -> NotInProcess
"""

import logging
from dataclasses import dataclass

from kubernetes.client.exceptions import ApiException

from kmongo.core.pods import (
    CONTAINER_NAME,
    LABEL_REVISION_HASH,
    is_mongod_pod,
    is_ready,
    not_terminating,
    pod_filter,
)
from kmongo.errors import ObjSyncError, UnknownRestartState
from kmongo.models.mongodb import (
    RESTART_NOT_IN_PROCESS,
    RESTART_PRIMARY_DELETED,
    RESTART_SECONDARY_DELETED,
)
from kmongo.mongo.client import primary_host

logger = logging.getLogger(__name__)


@dataclass
class RestartResult:
    restart_complete: bool = False


class RestartCoordinator:
    def __init__(self, base):
        self.base = base

    @property
    def cr(self):
        return self.base.cr

    def expected_pods(self):
        return self.cr.spec.members + (1 if self.cr.spec.arbiter else 0)

    def current_pods(self):
        pods = self.base.list_pods(self.base.replset_labels())
        return pod_filter(pods, not_terminating, is_mongod_pod)

    def restart(self):
        """Advance the restart by one phase.

        Returns RestartResult(restart_complete=False) without touching the
        phase while any expected pod is not ready.
        """
        pods = self.current_pods()
        ready = [p for p in pods if is_ready(p)]
        if len(ready) < self.expected_pods():
            logger.info(
                f"Restart of {self.cr.name} waiting: {len(ready)}/{self.expected_pods()} pods ready"
            )
            return RestartResult(False)

        primary = primary_host(self.base.get_repl_set_status())
        state = self.cr.status.restartState or RESTART_NOT_IN_PROCESS

        if state == RESTART_NOT_IN_PROCESS:
            self.apply_resources()
            for pod in pods:
                if self.base.external_host(pod) == primary:
                    continue
                if self.is_stale(pod):
                    self.delete_pod_in_restart(pod)
            self.base.update_restart_state(RESTART_SECONDARY_DELETED)
            return RestartResult(False)

        if state == RESTART_SECONDARY_DELETED:
            primary_pod = next(
                (p for p in pods if self.base.external_host(p) == primary), None
            )
            if primary_pod is None:
                logger.warning(f"No pod of {self.cr.name} is serving primary {primary!r}")
            else:
                with self.base.mongo_client() as client:
                    client.step_down()
                self.base.sleep(self.base.settings.stepdown_wait)
                self.delete_pod_in_restart(primary_pod)
            self.base.update_restart_state(RESTART_PRIMARY_DELETED)
            return RestartResult(False)

        if state == RESTART_PRIMARY_DELETED:
            self.base.update_restart_state(RESTART_NOT_IN_PROCESS)
            self.base.notify("Normal", "Restarted", f"Rolling restart of {self.cr.name} complete")
            return RestartResult(True)

        raise UnknownRestartState(f"unknown restart state {state!r}")

    def is_stale(self, pod):
        labels = pod.metadata.labels or {}
        return labels.get(LABEL_REVISION_HASH) != self.cr.status.currentRevision

    def apply_resources(self):
        """Patch every member workload with the desired resources and revision."""
        self.base.update_revision()
        body = {
            "spec": {
                "template": {
                    "metadata": {
                        "labels": {LABEL_REVISION_HASH: self.cr.status.currentRevision}
                    },
                    "spec": {
                        "containers": [{
                            "name": CONTAINER_NAME,
                            "resources": self.cr.spec.resources.model_dump(),
                        }]
                    },
                }
            }
        }
        ns = self.base.namespace
        try:
            for sts in self.base.store.list_statefulsets(ns, self.base.replset_labels()):
                self.base.store.patch_statefulset(ns, sts.metadata.name, body)
                logger.info(f"Patched resources of statefulset {sts.metadata.name}")
        except ApiException as e:
            raise ObjSyncError(f"patch statefulsets of {self.cr.name}: {e.reason}") from e

    def delete_pod_in_restart(self, pod):
        try:
            self.base.store.delete_pod(self.base.namespace, pod.metadata.name)
        except ApiException as e:
            raise ObjSyncError(f"delete pod {pod.metadata.name}: {e.reason}") from e
        self.base.notify("Normal", "PodRestarted", f"Deleted pod {pod.metadata.name} for restart")
