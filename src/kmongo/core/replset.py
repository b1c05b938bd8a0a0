"""Replica set workload scaling and member admission."""

import logging

from kubernetes.client.exceptions import ApiException

from kmongo.core import conditions, hostdir
from kmongo.core.base import REPLSET_NAME
from kmongo.core.pods import (
    classify,
    get_ordinal,
    is_healthy,
    is_not_need_reconfig,
    not_terminating,
    owner_workload,
    parse_ordinal,
    pod_filter,
)
from kmongo.errors import ObjSyncError, TransportError
from kmongo.models.mongodb import CONDITION_USER_CLUSTER_ADMIN, STATE_RECONCILING
from kmongo.mongo import members as member_algebra
from kmongo.mongo import script
from kmongo.mongo.models import Member
from kmongo.services.builder import command_repl_set

logger = logging.getLogger(__name__)


def _removal_order(statefulsets, desired):
    """Workloads in the order they are removed on scale down.

    Ordinals outside [0, desired) go first, then the rest, each group from
    the highest ordinal down.
    """

    def ordinal(sts):
        return parse_ordinal(sts.metadata.name)

    redundant = [s for s in statefulsets if not 0 <= ordinal(s) < desired]
    rest = [s for s in statefulsets if 0 <= ordinal(s) < desired]
    return (
        sorted(redundant, key=ordinal, reverse=True)
        + sorted(rest, key=ordinal, reverse=True)
    )


class ReplicaSetReconciler:
    """Converges workloads and replica set membership towards spec.members."""

    def __init__(self, base):
        self.base = base

    @property
    def cr(self):
        return self.base.cr

    @property
    def store(self):
        return self.base.store

    @property
    def builder(self):
        return self.base.builder

    def data_labels(self):
        return self.builder.data_labels(self.base.replset_labels())

    def arbiter_labels(self):
        return self.base.replset_labels(arbiter=True)

    # one pass

    def sync_member(self):
        """Scale data members, sync the arbiter, then admit healthy pods."""
        spec = self.cr.spec
        labels = self.data_labels()
        statefulsets = self._list_statefulsets(labels)
        if len(statefulsets) != spec.members:
            self.base.update_state(STATE_RECONCILING)

        data_pods = pod_filter(self.base.list_pods(labels), not_terminating)
        if spec.members > len(statefulsets):
            self.scale_up(statefulsets, data_pods)
        elif spec.members < len(statefulsets):
            self.scale_down_data_node(statefulsets, data_pods)

        if spec.arbiter:
            self.ensure_arbiter()
        else:
            self.scale_down_arbiter_node()

        if spec.members > 0:
            self.base.wait_for_pods(labels, spec.members)

        replset_labels = self.base.replset_labels()
        live = self.base.filter_pods_of_live_workloads(
            self.base.list_pods(replset_labels),
            self._list_statefulsets(replset_labels),
        )
        self.ensure_members(live)

    def teardown(self):
        """Scale to zero members without an arbiter; no configuration is touched."""
        self.cr.spec.members = 0
        self.cr.spec.arbiter = False
        labels = self.data_labels()
        statefulsets = self._list_statefulsets(labels)
        if statefulsets:
            self.scale_down_data_node(statefulsets, self.base.list_pods(labels))
        self.scale_down_arbiter_node()

    def _list_statefulsets(self, labels):
        try:
            return self.store.list_statefulsets(self.base.namespace, labels)
        except ApiException as e:
            raise ObjSyncError(f"list statefulsets {labels}: {e.reason}") from e

    # workloads

    def _create_workload(self, name, labels):
        body = self.builder.statefulset(
            name, labels, command_repl_set(REPLSET_NAME, self.cr.spec.customConfigRef)
        )
        try:
            self.store.create_statefulset(self.base.namespace, body)
        except ApiException as e:
            if e.status != 409:
                raise ObjSyncError(f"create statefulset {name}: {e.reason}") from e
            logger.info(f"Statefulset {name} already exists")
        else:
            self.base.notify("Normal", "MemberCreated", f"Created statefulset {name}")

        if self.cr.spec.metricsExporterSpec.enable:
            self._ensure_metric_service(name, labels)

    def _ensure_metric_service(self, sts_name, labels):
        svc_name = self.builder.metric_service_name(sts_name)
        try:
            if self.store.get_service(self.base.namespace, svc_name) is not None:
                return
            self.store.create_service(
                self.base.namespace, self.builder.metric_service(sts_name, labels)
            )
        except ApiException as e:
            if e.status != 409:
                raise ObjSyncError(f"create service {svc_name}: {e.reason}") from e
        logger.info(f"Metrics service {svc_name} ensured")

    def _delete_workload(self, name):
        ns = self.base.namespace
        try:
            self.store.delete_statefulset(ns, name)
            if self.cr.spec.metricsExporterSpec.enable:
                self.store.delete_service(ns, self.builder.metric_service_name(name))
        except ApiException as e:
            raise ObjSyncError(f"delete statefulset {name}: {e.reason}") from e
        self.base.notify("Normal", "MemberDeleted", f"Deleted statefulset {name}")

    # scaling

    def scale_up(self, statefulsets, data_pods):
        """Create one workload per missing ordinal, never more than the shortfall."""
        desired = self.cr.spec.members
        existing = {s.metadata.name for s in statefulsets}
        to_create = desired - len(statefulsets)
        labels = self.data_labels()

        created = 0
        for ordinal in classify(data_pods, desired).miss:
            if created >= to_create:
                break
            name = self.builder.data_sts_name(ordinal)
            if name in existing:
                continue
            self._create_workload(name, labels)
            created += 1
        logger.info(f"Scaled up {self.cr.name}: created {created} of {to_create} members")
        return created

    def scale_down_data_node(self, statefulsets, data_pods):
        """Evict and delete workloads until only spec.members remain.

        A member that reports itself primary is stepped down first, and the
        election is given stepdown_wait seconds before its host is removed.
        """
        desired = self.cr.spec.members
        required = len(statefulsets) - desired
        pods_by_workload = {owner_workload(p): p for p in data_pods}

        removed = 0
        for sts in _removal_order(statefulsets, desired):
            if removed >= required:
                break
            name = sts.metadata.name
            pod = pods_by_workload.get(name)
            if desired > 0 and pod is not None:
                self.remove_member(pod)
            elif desired > 0:
                self.remove_member_of_workload(name)
            self._delete_workload(name)
            removed += 1
        logger.info(f"Scaled down {self.cr.name}: removed {removed} members")
        return removed

    def remove_member(self, pod):
        """Step the member down when it is primary, then drop it from the config."""
        addr = self.base.external_host(pod)
        host = addr
        try:
            with self.base.mongo_client_one_node(addr) as client:
                info = client.get_node_info()
                if info.me:
                    host = info.me
                if info.ismaster:
                    logger.info(f"Member {host} is primary, stepping down before removal")
                    client.step_down()
                    self.base.sleep(self.base.settings.stepdown_wait)
        except TransportError as e:
            logger.warning(f"Member {addr} unreachable, removing by published address: {e}")

        with self.base.mongo_client() as client:
            client.remove_members([Member(host=host)])

    def remove_member_of_workload(self, name):
        """Drop a podless workload's member by the address of its member service."""
        try:
            host = self.base.workload_host(name)
        except ObjSyncError as e:
            logger.warning(f"Statefulset {name} has no pod and no published address: {e}")
            return
        logger.info(f"Statefulset {name} has no running pod, removing {host} from the config")
        with self.base.mongo_client() as client:
            client.remove_members([Member(host=host)])

    # arbiter

    def ensure_arbiter(self):
        name = self.builder.arbiter_sts_name()
        try:
            sts = self.store.get_statefulset(self.base.namespace, name)
        except ApiException as e:
            raise ObjSyncError(f"get statefulset {name}: {e.reason}") from e
        if sts is None:
            self._create_workload(name, self.arbiter_labels())

    def arbiter_node_host(self, pod):
        """Arbiters accept no credentialed client, so ask the shell who it is."""
        stdout = self.base.exec_in_mongo(
            pod, script.eval_no_auth(script.DB_SERVER_STATUS_REPL_ME)
        )
        return script.parse_repl_me(stdout)

    def scale_down_arbiter_node(self):
        name = self.builder.arbiter_sts_name()
        try:
            sts = self.store.get_statefulset(self.base.namespace, name)
        except ApiException as e:
            raise ObjSyncError(f"get statefulset {name}: {e.reason}") from e
        if sts is None:
            return

        if self.cr.spec.members > 0:
            pods = [
                p for p in self.base.list_pods(self.arbiter_labels())
                if owner_workload(p) == name
            ]
            if not pods:
                raise ObjSyncError(f"arbiter statefulset {name} has no pod")
            host = self.arbiter_node_host(pods[0])
            if host:
                with self.base.mongo_client() as client:
                    client.remove_members([Member(host=host)])
            else:
                logger.warning(f"Arbiter {pods[0].metadata.name} did not report its host")

        self._delete_workload(name)
        hostdir.clear_arbiter(self.store, self.cr.spec.memberConfigRef, self.base.namespace)

    # admission

    def ensure_members(self, pods):
        if self.cr.spec.metricsExporterSpec.enable:
            for pod in pods:
                workload = owner_workload(pod)
                if workload:
                    self._ensure_metric_service(workload, pod.metadata.labels or {})

        for pod in sorted(pods, key=get_ordinal):
            if is_healthy(pod):
                self.ensure_member_config(pod)

    def ensure_member_config(self, pod):
        """Add the pod's own directory entry to the live config when missing."""
        if is_not_need_reconfig(pod):
            return
        rs_name = REPLSET_NAME
        if not conditions.check_condition(
            self.cr.status.conditions, CONDITION_USER_CLUSTER_ADMIN, rs_name
        ):
            logger.debug(f"Cluster admin of {rs_name} not ready, skipping {pod.metadata.name}")
            return

        directory = self.base.load_directory()
        me = hostdir.resolve(
            directory,
            rs_name,
            hostdir.SCOPE_SELF,
            my_host=self.base.external_host(pod),
            arbiter=self.cr.spec.arbiter,
        )
        with self.base.mongo_client(hostdir.data_hosts(directory)) as client:
            missing, changed = member_algebra.diff(client.read_config().members, me)
            if not changed:
                return
            logger.info(f"Admitting {member_algebra.hosts(missing)} into {rs_name}")
            client.add_members(me)
