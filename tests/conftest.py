import base64
import types

import pytest
from kubernetes import client as k8s
from kubernetes.client.exceptions import ApiException

from kmongo.config import OperatorSettings
from kmongo.core.base import MongoBase
from kmongo.core.pods import LABEL_APP
from kmongo.models.mongodb import MongoDB
from kmongo.mongo.models import Member, ReplStatus, RSConfig
from kmongo.mongo import members as member_algebra
from kmongo.services.builder import LABEL_CLUSTER_VIP

VIP = "10.0.0.1"


def make_settings(**overrides):
    values = dict(sync_wait=0, pod_poll_interval=0, pod_poll_timeout=0, stepdown_wait=3)
    values.update(overrides)
    return OperatorSettings(**values)


def make_cr(name="demo", namespace="db", status=None, **spec):
    return MongoDB.from_body({
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": "uid-1",
            "resourceVersion": "1",
            "labels": {LABEL_CLUSTER_VIP: VIP},
        },
        "spec": spec,
        "status": status or {},
    })


def make_pod(name, labels=None, workload=None, phase="Running", ready=True,
             ip="10.1.0.1", terminating=False, containers=("mongo",)):
    owners = None
    if workload:
        owners = [k8s.V1OwnerReference(
            api_version="apps/v1", kind="StatefulSet", name=workload, uid=f"uid-{workload}"
        )]
    statuses = [
        k8s.V1ContainerStatus(
            name=c, image="mongo", image_id="", ready=ready, restart_count=0,
            state=k8s.V1ContainerState(running=k8s.V1ContainerStateRunning()),
        )
        for c in containers
    ]
    return k8s.V1Pod(
        metadata=k8s.V1ObjectMeta(
            name=name,
            namespace="db",
            labels=dict(labels or {}),
            owner_references=owners,
            deletion_timestamp="2024-01-01T00:00:00Z" if terminating else None,
        ),
        spec=k8s.V1PodSpec(containers=[k8s.V1Container(name=c) for c in containers]),
        status=k8s.V1PodStatus(
            phase=phase,
            pod_ip=ip,
            conditions=[k8s.V1PodCondition(type="Ready", status="True" if ready else "False")],
            container_statuses=statuses,
        ),
    )


def make_sts(name, labels=None):
    return k8s.V1StatefulSet(metadata=k8s.V1ObjectMeta(name=name, labels=dict(labels or {})))


def make_service(name, node_port, labels=None):
    return k8s.V1Service(
        metadata=k8s.V1ObjectMeta(name=name, labels=dict(labels or {})),
        spec=k8s.V1ServiceSpec(ports=[k8s.V1ServicePort(port=27017, node_port=node_port)]),
    )


def directory_text(hosts):
    return "\n".join(f"_id:{i},host:'{h}'" for i, h in enumerate(hosts))


def _matches(obj, labels):
    have = obj.metadata.labels or {}
    return all(have.get(k) == v for k, v in labels.items())


class FakeStore:
    """In-memory object store; every mutation is appended to journal."""

    def __init__(self, journal=None):
        self.journal = journal if journal is not None else []
        self.pods = []
        self.statefulsets = {}
        self.services = {}
        self.config_maps = {}
        self.secrets = {}
        self.mongodb = None
        self.status_writes = []
        self.status_errors = []
        self.execs = []
        self.exec_results = []
        self.patches = []
        self.sts_bodies = {}

    # pods

    def list_pods(self, namespace, labels):
        return [p for p in self.pods if _matches(p, labels)]

    def delete_pod(self, namespace, name):
        self.journal.append(("delete_pod", name))
        self.pods = [p for p in self.pods if p.metadata.name != name]

    def exec_command(self, pod, container, command):
        self.execs.append((pod.metadata.name, command))
        result = self.exec_results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    # statefulsets

    def list_statefulsets(self, namespace, labels):
        return [s for s in self.statefulsets.values() if _matches(s, labels)]

    def get_statefulset(self, namespace, name):
        return self.statefulsets.get(name)

    def create_statefulset(self, namespace, body):
        name = body["metadata"]["name"]
        self.journal.append(("create_sts", name))
        self.statefulsets[name] = make_sts(name, body["metadata"]["labels"])
        self.sts_bodies[name] = body
        return self.statefulsets[name]

    def patch_statefulset(self, namespace, name, body):
        self.patches.append((name, body))

    def delete_statefulset(self, namespace, name):
        self.journal.append(("delete_sts", name))
        self.statefulsets.pop(name, None)

    # services

    def list_services(self, namespace, labels):
        return [s for s in self.services.values() if _matches(s, labels)]

    def get_service(self, namespace, name):
        return self.services.get(name)

    def create_service(self, namespace, body):
        name = body["metadata"]["name"]
        self.journal.append(("create_svc", name))
        self.services[name] = make_service(name, None, body["metadata"]["labels"])

    def delete_service(self, namespace, name):
        self.journal.append(("delete_svc", name))
        self.services.pop(name, None)

    # config maps and secrets

    def get_config_map(self, namespace, name):
        return self.config_maps.get(name)

    def replace_config_map(self, namespace, name, body):
        self.config_maps[name] = body

    def get_secret(self, namespace, name):
        return self.secrets.get(name)

    def create_secret(self, namespace, body):
        name = body["metadata"]["name"]
        self.journal.append(("create_secret", name))
        self.secrets[name] = k8s.V1Secret(
            metadata=k8s.V1ObjectMeta(name=name), data=body.get("data")
        )

    # MongoDB objects

    def get_mongodb(self, namespace, name):
        return self.mongodb

    def replace_mongodb_status(self, namespace, name, body):
        if self.status_errors:
            raise self.status_errors.pop(0)
        self.status_writes.append(body)
        version = str(len(self.status_writes) + 100)
        return {"metadata": {"resourceVersion": version}}

    # helpers

    def add_directory(self, hosts, arbiters=(), name="hostconf"):
        self.config_maps[name] = k8s.V1ConfigMap(
            metadata=k8s.V1ObjectMeta(name=name),
            data={"datas": directory_text(hosts), "arbiters": directory_text(arbiters)},
        )

    def add_user_secret(self, cr_name, user, password="secret"):
        data = {
            "MONGO_USER": user,
            "MONGO_PASSWORD": password,
            "MONGO_ROLE": user,
            "MONGO_DB": "admin",
        }
        self.secrets[f"{cr_name}-{user.lower()}"] = k8s.V1Secret(
            data={k: base64.b64encode(v.encode()).decode() for k, v in data.items()}
        )


def api_error(status, reason="boom"):
    return ApiException(status=status, reason=reason)


class FakeMongo:
    """Stands in for a ReplSetClient; one per address, plus "rs" for set-aware clients."""

    def __init__(self, key, journal):
        self.key = key
        self.journal = journal
        self.config = RSConfig(id="replset-0", version=1, members=[])
        self.node_info = ReplStatus()
        self.status = []
        self.member_status = None
        self.fail = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def _check(self):
        if self.fail is not None:
            raise self.fail

    def read_config(self):
        self._check()
        return self.config.model_copy(deep=True)

    def get_status(self):
        self._check()
        return list(self.status)

    def get_node_info(self):
        self._check()
        return self.node_info

    def step_down(self):
        self._check()
        self.journal.append(("step_down", self.key))

    def check_member_status(self):
        self._check()
        return self.member_status

    def add_members(self, members):
        self._check()
        self.journal.append(("add", self.key, member_algebra.hosts(members)))
        merged, changed = member_algebra.merge(self.config.members, members)
        self.config.members = merged
        return changed

    def remove_members(self, members):
        self._check()
        self.journal.append(("remove", self.key, member_algebra.hosts(members)))
        remaining, changed = member_algebra.remove(self.config.members, members)
        self.config.members = remaining
        return changed

    def create_user_by_secret(self, data):
        self.journal.append(("create_user", self.key, data["MONGO_USER"]))

    def create_user(self, user, password, roles):
        self.journal.append(("create_user", self.key, user))

    def change_user_password(self, user, password):
        self.journal.append(("change_password", self.key, user))


class FakeDial:
    def __init__(self, journal):
        self.journal = journal
        self.clients = {}
        self.calls = []

    def client(self, key):
        if key not in self.clients:
            self.clients[key] = FakeMongo(key, self.journal)
        return self.clients[key]

    def __call__(self, addrs, username=None, password=None, direct=False, timeout=30):
        self.calls.append((tuple(addrs), username, direct))
        return self.client(addrs[0] if direct else "rs")


@pytest.fixture
def world():
    """A MongoBase wired to fakes, sharing one journal of side effects."""
    journal = []
    store = FakeStore(journal)
    dial = FakeDial(journal)
    state = types.SimpleNamespace(journal=journal, store=store, dial=dial)

    def build(cr=None, settings=None):
        state.cr = cr or make_cr(members=3)
        state.base = MongoBase(
            state.cr,
            store,
            settings or make_settings(),
            dial=dial,
            sleep=lambda s: journal.append(("sleep", s)),
        )
        for user in ("root", "clusterAdmin", "clusterMonitor"):
            store.add_user_secret(state.cr.name, user)
        return state.base

    state.build = build
    return state


def add_member(world, ordinal, node_port, ip=None, ready=True, arbiter=False, **pod_kw):
    """Data (or arbiter) workload with its pod and NodePort service."""
    base = world.base
    if arbiter:
        labels = base.replset_labels(arbiter=True)
        sts_name = base.builder.arbiter_sts_name()
    else:
        labels = base.builder.data_labels(base.replset_labels())
        sts_name = base.builder.data_sts_name(ordinal)
    world.store.statefulsets[sts_name] = make_sts(sts_name, labels)
    world.store.services[sts_name] = make_service(
        sts_name, node_port, base.instance_labels()
    )
    pod = make_pod(
        f"{sts_name}-0",
        labels={**labels, LABEL_APP: sts_name},
        workload=sts_name,
        ip=ip or f"10.1.0.{ordinal + 10 if ordinal >= 0 else 99}",
        ready=ready,
        **pod_kw,
    )
    world.store.pods.append(pod)
    return pod


def host_of(node_port):
    return f"{VIP}:{node_port}"


def member(host, id=0):
    return Member(id=id, host=host, votes=1, priority=1)
