"""Host directory: the ConfigMap publishing every member's reachable host:port.

Each of the two keys holds newline separated entries such as
``_id:0,host:'10.29.5.103:31029'``. Data entries come first in the
resolved membership, arbiters after them.
"""

import logging

from kubernetes.client.exceptions import ApiException

from kmongo.errors import DirectoryMalformed, DirectoryUnavailable, ObjSyncError
from kmongo.mongo.models import MAX_MEMBERS, MAX_VOTING_MEMBERS, Member

logger = logging.getLogger(__name__)

DATA_KEY = "datas"
ARBITER_KEY = "arbiters"
HOST_MARKER = "host:'"

SCOPE_ALL = "all"
SCOPE_SELF = "self"


def parse_entry(line):
    """host:port of one directory line."""
    if HOST_MARKER not in line:
        raise DirectoryMalformed(f"host directory entry has no host: {line!r}")
    return line.split(HOST_MARKER, 1)[1].strip().rstrip("'")


def entries(text):
    """Hosts listed in one directory value, blank lines skipped."""
    return [parse_entry(line) for line in (text or "").split("\n") if line.strip()]


def data_hosts(directory):
    return entries(directory.get(DATA_KEY))


def arbiter_hosts(directory):
    return entries(directory.get(ARBITER_KEY))


def resolve(directory, rs_name, scope=SCOPE_ALL, my_host=None, arbiter=True):
    """Member descriptors for the published hosts.

    Args:
        directory: ConfigMap data (key -> newline separated entries)
        rs_name: replica set name, used for log context
        scope: SCOPE_ALL for the full membership, SCOPE_SELF for my_host only
        my_host: the vip:nodePort of the asking pod when scope is SCOPE_SELF
        arbiter: whether arbiter entries take part in a SCOPE_SELF match
    """
    members = []
    arbiter_ids = set()
    candidates = [(host, False) for host in data_hosts(directory)]
    candidates += [(host, True) for host in arbiter_hosts(directory)]

    for host, arbiter_only in candidates:
        if len(members) >= MAX_MEMBERS:
            logger.warning(
                f"Replica set {rs_name} directory lists more than {MAX_MEMBERS} members, "
                f"dropping {host}"
            )
            continue
        voting = len(members) < MAX_VOTING_MEMBERS
        member = Member(
            id=len(members),
            host=host,
            votes=1 if voting else 0,
            priority=1 if voting else 0,
            arbiterOnly=arbiter_only,
            buildIndexes=not arbiter_only,
        )
        if arbiter_only:
            arbiter_ids.add(member.id)
        members.append(member)

    if scope == SCOPE_ALL:
        return members
    if scope != SCOPE_SELF:
        raise ValueError(f"unknown directory scope {scope}")

    return [
        m for m in members
        if m.host == my_host and (arbiter or m.id not in arbiter_ids)
    ]


def load_directory(store, name, namespace):
    """ConfigMap data of the host directory."""
    try:
        cm = store.get_config_map(namespace, name)
    except ApiException as e:
        raise DirectoryUnavailable(f"host directory {namespace}/{name}: {e.reason}") from e
    if cm is None:
        raise DirectoryUnavailable(f"host directory {namespace}/{name} not found")
    return dict(cm.data or {})


def clear_arbiter(store, name, namespace):
    """Drop the published arbiter entry."""
    try:
        cm = store.get_config_map(namespace, name)
    except ApiException as e:
        raise DirectoryUnavailable(f"host directory {namespace}/{name}: {e.reason}") from e
    if cm is None:
        return
    cm.data = dict(cm.data or {})
    cm.data[ARBITER_KEY] = ""
    try:
        store.replace_config_map(namespace, name, cm)
    except ApiException as e:
        raise ObjSyncError(f"clear arbiter of {namespace}/{name}: {e.reason}") from e
    logger.info(f"Cleared arbiter entry of host directory {namespace}/{name}")
