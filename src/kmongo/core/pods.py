"""Pod predicates and the ordinal topology classifier."""

import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

CONTAINER_NAME = "mongo"
STATEFULSET_KIND = "StatefulSet"

LABEL_ROLE = "role"
LABEL_REPLSET_NAME = "replSetName"
LABEL_ARBITER = "arbiter"
LABEL_DATA = "data"
LABEL_APP = "app"
LABEL_REVISION_HASH = "mongodb.k8s.io/revision-hash"

ROLE_REPLSET = "replset"
ROLE_STANDALONE = "standalone"
ROLE_MONGOS = "mongos"
ROLE_CONFIGSVR = "configsvr"
ROLE_SHARDSVR = "shardsvr"
ROLE_EXPORTER = "exporter"

_ORDINAL_RE = re.compile(r"(.*)-([0-9]+)$")


def parse_ordinal(name):
    """Trailing -<n> of a name, or -1 when there is none."""
    match = _ORDINAL_RE.match(name or "")
    if not match:
        return -1
    return int(match.group(2))


def owner_workload(pod):
    """Name of the StatefulSet owning the pod, or None."""
    for ref in pod.metadata.owner_references or []:
        if ref.kind == STATEFULSET_KIND:
            return ref.name
    return None


def get_ordinal(pod):
    """Member ordinal of a pod.

    Every member runs in its own single-replica StatefulSet named
    <cr>-mongodb-<n>, so the ordinal lives on the owning workload; the pod
    name suffix is used for pods without one.
    """
    workload = owner_workload(pod)
    if workload is not None:
        return parse_ordinal(workload)
    return parse_ordinal(pod.metadata.name)


def _labels(pod):
    return pod.metadata.labels or {}


def is_arbiter(pod):
    return _labels(pod).get(LABEL_ARBITER) == "true"


def is_exporter(pod):
    return _labels(pod).get(LABEL_ROLE) == ROLE_EXPORTER


def is_terminating(pod):
    return pod.metadata.deletion_timestamp is not None


def is_mongod_pod(pod):
    return any(c.name == CONTAINER_NAME for c in pod.spec.containers or [])


def is_not_need_reconfig(pod):
    """Roles that never join a replica set configuration through this operator."""
    return _labels(pod).get(LABEL_ROLE) in (
        ROLE_STANDALONE,
        ROLE_MONGOS,
        ROLE_CONFIGSVR,
        ROLE_SHARDSVR,
    )


def is_ready(pod):
    """Running, Ready, and the mongo container running."""
    status = pod.status
    if status is None or status.phase != "Running":
        return False
    ready = any(
        c.type == "Ready" and c.status == "True" for c in status.conditions or []
    )
    if not ready:
        return False
    for cs in status.container_statuses or []:
        if cs.name == CONTAINER_NAME:
            return cs.state is not None and cs.state.running is not None
    return False


def is_healthy(pod):
    return not is_terminating(pod) and is_ready(pod)


def is_pending(pod):
    return is_terminating(pod) or (pod.status is not None and pod.status.phase == "Pending")


def pod_filter(pods, *filters):
    return [p for p in pods if all(f(p) for f in filters)]


def not_arbiter(pod):
    return not is_arbiter(pod)


def not_exporter(pod):
    return not is_exporter(pod)


def not_terminating(pod):
    return not is_terminating(pod)


@dataclass
class PodBucket:
    """Pods of one selector sorted against a desired member count."""

    miss: list = field(default_factory=list)
    ok: list = field(default_factory=list)
    pending: list = field(default_factory=list)
    failed: list = field(default_factory=list)
    redundant: list = field(default_factory=list)


def classify(pods, desired):
    """Partition pods into a PodBucket.

    Ordinals outside [0, desired) are redundant. When two pods claim the same
    ordinal the later one wins the slot and the earlier one is dropped from
    every bucket.
    """
    slots = [None] * desired
    bucket = PodBucket()

    for pod in pods:
        ordinal = get_ordinal(pod)
        if ordinal < 0 or ordinal >= desired:
            bucket.redundant.append(pod)
            continue
        if slots[ordinal] is not None:
            logger.warning(
                f"Pods {slots[ordinal].metadata.name} and {pod.metadata.name} "
                f"both claim ordinal {ordinal}, keeping {pod.metadata.name}"
            )
        slots[ordinal] = pod

    for ordinal, pod in enumerate(slots):
        if pod is None:
            bucket.miss.append(ordinal)
        elif is_pending(pod):
            bucket.pending.append(pod)
        elif is_healthy(pod):
            bucket.ok.append(pod)
        elif pod.status is None or pod.status.phase != "Running":
            bucket.failed.append(pod)
        else:
            # running but not ready yet
            bucket.pending.append(pod)

    return bucket


def sort_by_ordinal(pods, reverse=False):
    return sorted(pods, key=get_ordinal, reverse=reverse)
