"""kopf handlers for MongoDB custom resources."""

import logging
import threading

import kopf

from kmongo.config import get_settings
from kmongo.core.base import MongoBase
from kmongo.core.reconcile import Reconciler
from kmongo.models.mongodb import GROUP, PLURAL, VERSION, MongoDB
from kmongo.services.kube import KubeStore

logger = logging.getLogger(__name__)

# one pass in flight per object
_locks = {}
_locks_guard = threading.Lock()


def _lock_for(uid):
    with _locks_guard:
        return _locks.setdefault(uid, threading.Lock())


def _notifier(body):
    def notify(kind, reason, message):
        if kind == "Warning":
            kopf.warn(body, reason=reason, message=message)
        else:
            kopf.info(body, reason=reason, message=message)

    return notify


def build_reconciler(body):
    settings = get_settings()
    cr = MongoDB.from_body(body)
    store = KubeStore(timeout=settings.call_timeout)
    base = MongoBase(cr, store, settings, notify=_notifier(body))
    return Reconciler(base)


def run_pass(body):
    """Run one reconcile pass and turn a requeue into a kopf retry."""
    name = body["metadata"]["name"]
    with _lock_for(body["metadata"]["uid"]):
        result = build_reconciler(body).reconcile()

    if result.error is not None:
        raise kopf.TemporaryError(
            f"MongoDB {name} reconcile failed: {result.error}", delay=result.requeue_after
        )
    if result.requeue:
        raise kopf.TemporaryError(f"MongoDB {name} not ready yet", delay=result.requeue_after)


@kopf.on.create(GROUP, VERSION, PLURAL)
@kopf.on.update(GROUP, VERSION, PLURAL, field="spec")
@kopf.on.resume(GROUP, VERSION, PLURAL)
def mongodb_create_update(body, meta, **kwargs):
    """Handle MongoDB create, spec update, and resume on operator restart."""
    run_pass(body)
    kopf.info(body, reason="Reconciled", message=f"MongoDB {meta['name']} reconciled.")


@kopf.timer(GROUP, VERSION, PLURAL, interval=get_settings().requeue_success, idle=10)
def mongodb_resync(body, **kwargs):
    """Steady-state pass; membership drifts without any spec change."""
    run_pass(body)


@kopf.on.delete(GROUP, VERSION, PLURAL)
def mongodb_delete(body, meta, **kwargs):
    name = meta["name"]
    try:
        with _lock_for(meta["uid"]):
            build_reconciler(body).teardown()
    except Exception as e:
        kopf.exception(body, reason="DeleteFailed", message=f"MongoDB {name} teardown failed: {e}")
        raise kopf.TemporaryError(f"MongoDB {name} teardown failed: {e}", delay=5)
    finally:
        with _locks_guard:
            _locks.pop(meta["uid"], None)
    kopf.info(body, reason="Deleted", message=f"MongoDB {name} deleted.")
