"""One reconcile pass over a MongoDB resource and the classification of its outcome."""

import logging
from dataclasses import dataclass
from typing import Optional

from kmongo.core.base import resources_equal
from kmongo.errors import KmongoError, ObjSyncError, WaitRequeue
from kmongo.models.mongodb import (
    STATE_ERROR,
    STATE_PAUSE,
    STATE_RECONCILING,
    STATE_RUNNING,
)
from kmongo.modes import ModeRegistry

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of a pass.

    requeue asks the caller to run again after requeue_after seconds;
    error is set when the pass failed.
    """

    requeue: bool = False
    requeue_after: float = 0
    error: Optional[Exception] = None


class Reconciler:
    def __init__(self, base, mode=None):
        self.base = base
        self.mode = mode or ModeRegistry().create(base)

    @property
    def cr(self):
        return self.base.cr

    @property
    def settings(self):
        return self.base.settings

    def reconcile(self):
        """pause -> restart -> pre-config -> sync -> post-config"""
        if self.cr.spec.pause:
            logger.info(f"{self.cr.name} is paused")
            self.base.update_state(STATE_PAUSE)
            return ReconcileResult()

        try:
            self.check_restart()
            if self.cr.status.state == STATE_ERROR:
                self.base.update_state(STATE_RECONCILING)
        except Exception as e:
            logger.error(f"Restart check of {self.cr.name} failed: {e}")
            return ReconcileResult(True, self.settings.requeue_error, e)

        for action, step in (
            ("PreConfig", self.mode.pre_config),
            ("SyncMember", self.mode.sync),
            ("PostConfig", self.mode.post_config),
        ):
            try:
                step()
            except Exception as e:
                return self.handle_return(e, action)

        return self.handle_return(None, "Reconcile")

    def check_restart(self):
        """Run the rolling restart while resources drift from the last applied ones.

        Returns True when a restart is in progress or just completed.
        """
        desired = self.cr.spec.resources
        current = self.cr.status.currentInfo.resources
        if current is None:
            self.base.update_current_resources(desired)
            return False
        if resources_equal(desired, current):
            return False

        logger.info(f"Resources of {self.cr.name} changed, restarting members")
        self.base.update_state(STATE_RECONCILING)
        result = self.mode.restart()
        if result.restart_complete:
            self.base.update_current_resources(desired)
        return True

    def handle_return(self, err, action):
        """Map the pass outcome onto status and a requeue decision."""
        name = self.cr.name
        if err is None:
            self.base.update_state(STATE_RUNNING)
            self.base.update_current_members(self.cr.spec.members)
            return ReconcileResult(False, self.settings.requeue_success)

        if isinstance(err, WaitRequeue):
            logger.info(f"{name} {action} waiting: {err}")
            try:
                self.base.update_rs_status()
            except KmongoError as e:
                logger.warning(f"Could not refresh replica set status of {name}: {e}")
            return ReconcileResult(True, self.settings.requeue_error)

        self.base.notify("Warning", f"{action}Failed", str(err))

        if isinstance(err, ObjSyncError):
            self._best_effort(f"mark {name} reconciling", self.base.update_state, STATE_RECONCILING)
            return ReconcileResult(True, self.settings.requeue_error, err)

        logger.error(f"{name} {action} failed: {err}")
        self._best_effort(f"mark {name} failed", self.base.update_state, STATE_ERROR)
        pods = self._best_effort(
            f"list pods of {name}", self.base.list_pods, self.base.replset_labels()
        ) or []
        self._best_effort(f"record error status of {name}", self.base.update_err_rs_status, pods)
        self._best_effort(f"recover {name}", self.mode.recover, pods)
        return ReconcileResult(True, self.settings.requeue_error, err)

    @staticmethod
    def _best_effort(what, fn, *args):
        try:
            return fn(*args)
        except KmongoError as e:
            logger.warning(f"Could not {what}: {e}")
            return None

    def teardown(self):
        logger.info(f"Tearing down {self.cr.name}")
        self.mode.teardown()
