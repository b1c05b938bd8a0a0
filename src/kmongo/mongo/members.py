"""Set operations over replica set members, keyed by host."""

import logging

logger = logging.getLogger(__name__)


def _max_id(members):
    return max((m.id for m in members), default=-1)


def _new_entries(existing, incoming):
    """Incoming members whose host is not yet present, renumbered after existing ids."""
    known = {m.host for m in existing}
    next_id = _max_id(existing)
    added = []
    for member in incoming:
        if member.host in known:
            continue
        known.add(member.host)
        next_id += 1
        added.append(member.model_copy(update={"id": next_id}))
    return added


def merge(existing, incoming):
    """Append incoming members with unseen hosts.

    Returns:
        (merged, changed): changed is False when nothing was added
    """
    added = _new_entries(existing, incoming)
    return list(existing) + added, bool(added)


def diff(existing, incoming):
    """Same as merge but only returns the members that would be added."""
    added = _new_entries(existing, incoming)
    return added, bool(added)


def remove(existing, to_remove):
    """Drop members whose host matches one in to_remove.

    Returns:
        (remaining, changed): changed is False when no host matched
    """
    hosts = {m.host for m in to_remove}
    remaining = [m for m in existing if m.host not in hosts]
    return remaining, len(remaining) != len(existing)


def exists(existing, incoming):
    """True when every incoming host is already a member."""
    _, changed = diff(existing, incoming)
    return not changed


def hosts(members):
    return [m.host for m in members]
