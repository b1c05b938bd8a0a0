"""Per-pass context shared by the reconcile components."""

import hashlib
import json
import logging
import time

import backoff
from kubernetes.client.exceptions import ApiException
from kubernetes.utils import parse_quantity

from kmongo.config import get_settings
from kmongo.core import conditions, hostdir
from kmongo.core.pods import (
    CONTAINER_NAME,
    LABEL_REPLSET_NAME,
    LABEL_ROLE,
    ROLE_REPLSET,
    is_mongod_pod,
    is_ready,
    not_terminating,
    owner_workload,
    pod_filter,
)
from kmongo.errors import (
    KmongoError,
    ObjSyncError,
    UserBootstrapError,
    WaitRequeue,
)
from kmongo.models.mongodb import MongoDB
from kmongo.mongo import client as mongo_client
from kmongo.services.builder import (
    LABEL_CLUSTER_VIP,
    LABEL_INSTANCE,
    SECRET_PASSWORD,
    SECRET_USER,
    USER_CLUSTER_ADMIN,
    ResourceBuilder,
)
from kmongo.services.kube import decode_secret

logger = logging.getLogger(__name__)

REPLSET_NAME = "replset-0"


def resources_equal(a, b):
    """Compare two ResourceSettings by quantity, so 1000m equals 1."""
    if a is None or b is None:
        return a is b

    def normalise(resources):
        return {k: parse_quantity(v) for k, v in resources.items()}

    return (
        normalise(a.requests) == normalise(b.requests)
        and normalise(a.limits) == normalise(b.limits)
    )


class MongoBase:
    """CR, object store, builder and clients for one reconcile pass.

    Every status mutation goes through write_status, which replaces the whole
    status document and retries once against a freshly read object when the
    API server reports a conflict.
    """

    def __init__(self, cr, store, settings=None, dial=None, sleep=None, notify=None):
        self.cr = cr
        self.store = store
        self.settings = settings or get_settings()
        self.builder = ResourceBuilder(cr, self.settings)
        self._dial = dial or mongo_client.dial
        self.sleep = sleep or time.sleep
        self._notify = notify

    @property
    def namespace(self):
        return self.cr.namespace

    def notify(self, kind, reason, message):
        if kind == "Warning":
            logger.warning(f"{self.cr.name}: {reason}: {message}")
        else:
            logger.info(f"{self.cr.name}: {reason}: {message}")
        if self._notify is not None:
            self._notify(kind, reason, message)

    # labels

    def replset_labels(self, arbiter=False):
        labels = self.builder.with_base_labels(
            {LABEL_ROLE: ROLE_REPLSET, LABEL_REPLSET_NAME: REPLSET_NAME}
        )
        if arbiter:
            labels = self.builder.arbiter_labels(labels)
        return labels

    # pods

    def list_pods(self, labels):
        try:
            return self.store.list_pods(self.namespace, labels)
        except ApiException as e:
            raise ObjSyncError(f"list pods {labels}: {e.reason}") from e

    def check_pods_ready(self, expected, pods):
        """Raise WaitRequeue unless `expected` mongod pods are ready."""
        ready = [p for p in pods if is_mongod_pod(p) and is_ready(p)]
        if len(ready) < expected:
            raise WaitRequeue(f"{len(ready)}/{expected} mongo pods ready")

    def wait_for_pods(self, labels, expected):
        """Poll until at least `expected` pods are listed."""

        def count():
            return len(self.list_pods(labels))

        poll = backoff.on_predicate(
            backoff.constant,
            lambda n: n < expected,
            interval=self.settings.pod_poll_interval,
            max_time=self.settings.pod_poll_timeout,
            jitter=None,
        )(count)
        found = poll()
        if found < expected:
            raise WaitRequeue(f"{found}/{expected} pods created for {labels}")

    def filter_pods_of_live_workloads(self, pods, statefulsets):
        """Drop pods whose owning StatefulSet is gone or being deleted."""
        live = {
            sts.metadata.name for sts in statefulsets
            if sts.metadata.deletion_timestamp is None
        }
        return [
            p for p in pod_filter(pods, not_terminating) if owner_workload(p) in live
        ]

    # addresses

    def get_service_node_port(self, workload):
        """NodePort of the member service named after a StatefulSet."""
        try:
            svc = self.store.get_service(self.namespace, workload)
        except ApiException as e:
            raise ObjSyncError(f"get service {workload}: {e.reason}") from e
        if svc is None or not svc.spec.ports:
            raise ObjSyncError(f"member service {workload} not found")
        return svc.spec.ports[0].node_port

    def workload_host(self, workload):
        """vip:nodePort under which a StatefulSet's member is published."""
        vip = self.cr.labels.get(LABEL_CLUSTER_VIP, "")
        return f"{vip}:{self.get_service_node_port(workload)}"

    def external_host(self, pod):
        return self.workload_host(owner_workload(pod) or pod.metadata.name)

    def load_directory(self):
        return hostdir.load_directory(self.store, self.cr.spec.memberConfigRef, self.namespace)

    def mongo_addrs(self):
        return hostdir.data_hosts(self.load_directory())

    # credentials and clients

    def user_auth(self, user):
        name = self.builder.user_secret_name(user)
        try:
            secret = self.store.get_secret(self.namespace, name)
        except ApiException as e:
            raise ObjSyncError(f"get secret {name}: {e.reason}") from e
        if secret is None:
            raise UserBootstrapError(f"secret {name} missing")
        data = decode_secret(secret)
        return data, data.get(SECRET_USER, ""), data.get(SECRET_PASSWORD, "")

    def dial(self, addrs, user=USER_CLUSTER_ADMIN, direct=False):
        _, username, password = self.user_auth(user)
        return self._dial(
            addrs,
            username=username,
            password=password,
            direct=direct,
            timeout=self.settings.call_timeout,
        )

    def mongo_client(self, addrs=None):
        """Replica set aware client over the published addresses."""
        return self.dial(addrs or self.mongo_addrs())

    def mongo_client_one_node(self, addr):
        return self.dial([addr], direct=True)

    def exec_in_mongo(self, pod, command):
        return self.store.exec_command(pod, CONTAINER_NAME, command)

    # status

    def write_status(self):
        try:
            resp = self.store.replace_mongodb_status(
                self.namespace, self.cr.name, self.cr.to_body()
            )
        except ApiException as e:
            if e.status != 409:
                raise ObjSyncError(f"update status of {self.cr.name}: {e.reason}") from e
            logger.warning(f"Status of {self.cr.name} changed underneath, re-reading")
            status = self.cr.status
            self.refresh()
            self.cr.status = status
            try:
                resp = self.store.replace_mongodb_status(
                    self.namespace, self.cr.name, self.cr.to_body()
                )
            except ApiException as e:
                raise ObjSyncError(f"update status of {self.cr.name}: {e.reason}") from e

        if resp:
            self.cr.metadata.resourceVersion = resp["metadata"]["resourceVersion"]
        logger.info(f"{self.cr.name} status state is {self.cr.status.state}")

    def refresh(self):
        body = self.store.get_mongodb(self.namespace, self.cr.name)
        if body is None:
            return
        fresh = MongoDB.from_body(body)
        self.cr.metadata = fresh.metadata
        self.cr.spec = fresh.spec
        self.cr.status = fresh.status

    def update_state(self, state):
        self.cr.status.state = state
        self.write_status()

    def update_restart_state(self, state):
        self.cr.status.restartState = state
        self.write_status()

    def update_conds(self, *conds):
        for cond in conds:
            conditions.update_condition(self.cr.status, cond)
        self.write_status()

    def update_current_resources(self, resources):
        self.cr.status.currentInfo.resources = resources.model_copy(deep=True)
        self.write_status()

    def update_current_members(self, members):
        self.cr.status.currentInfo.members = members
        self.write_status()

    def update_current_db_user_pw(self, password):
        if not password:
            return
        self.cr.status.currentInfo.dbUserPassword = password
        self.write_status()

    def calculate_revision(self):
        spec = json.dumps(self.cr.spec.model_dump(mode="json"), sort_keys=True)
        return f"{self.cr.name}-{hashlib.sha256(spec.encode()).hexdigest()[:10]}"

    def update_revision(self):
        revision = self.calculate_revision()
        if self.cr.status.currentRevision == revision:
            return
        self.cr.status.currentRevision = revision
        self.write_status()

    # replica set status

    def get_repl_set_status(self):
        with self.mongo_client() as client:
            return client.get_status()

    def update_rs_status(self):
        self.cr.status.replset = self.get_repl_set_status()
        self.write_status()

    def update_err_rs_status(self, pods):
        """Record members as seen by the first published node that answers directly."""
        for addr in self.mongo_addrs():
            try:
                with self.mongo_client_one_node(addr) as client:
                    self.cr.status.replset = client.get_status()
                break
            except KmongoError as e:
                logger.warning(f"Node {addr} did not report replica set status: {e}")
        logger.info(f"Pods at error time: {[p.metadata.name for p in pods]}")
        self.write_status()

    def check_member_role(self):
        mongo_client.check_member_roles(self.get_repl_set_status())

    def instance_labels(self):
        return {LABEL_INSTANCE: self.cr.name}
