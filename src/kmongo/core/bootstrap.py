"""One-time replica set initiation and user bootstrap.

Each step is guarded by a condition keyed by the replica set name, so a
step that succeeded is never repeated on later passes.
"""

import logging

from kmongo.core import conditions, hostdir
from kmongo.core.pods import (
    LABEL_REPLSET_NAME,
    not_arbiter,
    not_exporter,
    pod_filter,
    is_ready,
)
from kmongo.errors import ExecError, RsInitFailed, RsStatusNotOk, UserBootstrapError, WaitRequeue
from kmongo.models.mongodb import (
    CONDITION_RS_INIT,
    CONDITION_USER_CLUSTER_ADMIN,
    CONDITION_USER_CLUSTER_MONITOR,
    CONDITION_USER_DB,
    CONDITION_USER_ROOT,
)
from kmongo.mongo import script
from kmongo.mongo.models import members_to_shell
from kmongo.services.builder import USER_CLUSTER_ADMIN, USER_CLUSTER_MONITOR, USER_ROOT

logger = logging.getLogger(__name__)

READ_WRITE_ROLE = "readWrite"


def rs_name_of(pods):
    return (pods[0].metadata.labels or {}).get(LABEL_REPLSET_NAME, "")


def available_pod(pods):
    """First ready data pod, preferring ones that are not arbiters or exporters."""
    candidates = pod_filter(pods, not_arbiter, not_exporter)
    for pod in candidates:
        if is_ready(pod):
            return pod
    return candidates[0] if candidates else None


class Bootstrapper:
    """Shell driven replica set initiation and user creation."""

    def __init__(self, base):
        self.base = base

    @property
    def cr(self):
        return self.base.cr

    def _done(self, cond_type, rs_name):
        return conditions.check_condition(self.cr.status.conditions, cond_type, rs_name)

    def _mark(self, cond_type, rs_name):
        self.base.update_conds(conditions.true_condition(cond_type, rs_name))

    def _exec(self, pod, js, auth=False):
        if auth:
            command = script.eval_with_auth(self.cr.spec.rootPassword, js)
        else:
            command = script.eval_no_auth(js)
        return self.base.exec_in_mongo(pod, command)

    # replica set initiation

    def repl_set_init(self, pods, directory):
        """Initiate the replica set through the mongo shell of one data pod."""
        pod = available_pod(pods)
        if pod is None:
            raise WaitRequeue("no data pod available for replica set initiation")

        rs_name = rs_name_of(pods)
        if self._done(CONDITION_RS_INIT, rs_name):
            return
        if not self.cr.spec.rsInit:
            logger.info(f"Replica set {rs_name} is initiated externally, skipping")
            return

        self.base.sleep(self.base.settings.sync_wait)

        members = members_to_shell(hostdir.resolve(directory, rs_name, hostdir.SCOPE_ALL))
        stdout = self._exec(pod, script.RS_INITIATE % (rs_name, members))
        if script.NO_USERS_AUTHENTICATED in stdout:
            logger.info(f"Initiating {rs_name} needs auth, retrying as root")
            stdout = self._exec(pod, script.RS_INITIATE % (rs_name, members), auth=True)

        if not script.initiate_accepted(stdout):
            logger.warning(f"rs.initiate on {pod.metadata.name} not accepted, forcing reconfig")
            self._force_reconfig(pod, rs_name, members)
            raise RsInitFailed(f"replica set {rs_name} initiation failed: {stdout}")

        self.base.sleep(self.base.settings.sync_wait)
        self.check_repl_set_init(pod, rs_name)

    def _force_reconfig(self, pod, rs_name, members):
        js = script.RS_RECONFIG % (rs_name, members)
        try:
            self._exec(pod, js)
        except ExecError as e:
            if script.NOT_AUTHORIZED_ON_ADMIN not in e.stdout:
                raise RsInitFailed(f"replica set {rs_name} reconfig failed: {e}") from e
            logger.info(f"Reconfig of {rs_name} needs auth, retrying as root")
            self._exec(pod, js, auth=True)
            raise

    def check_repl_set_init(self, pod, rs_name):
        stdout = self._exec(pod, script.RS_STATUS)
        if script.NO_USERS_AUTHENTICATED in stdout:
            stdout = self._exec(pod, script.RS_STATUS, auth=True)
        if script.OK not in stdout:
            raise RsStatusNotOk(f"rs.status() of {rs_name} not ok: {stdout}")
        self._mark(CONDITION_RS_INIT, rs_name)
        self.base.notify("Normal", "ReplSetInitiated", f"Replica set {rs_name} initiated")

    # users

    def create_mongo_user(self, pods, directory, need_update, password):
        self.create_root_user(pods)
        self.create_cluster_user(pods, directory, USER_CLUSTER_ADMIN)
        self.create_cluster_user(pods, directory, USER_CLUSTER_MONITOR)
        self.create_or_update_db_user(pods, directory, need_update, password)

    def create_root_user(self, pods):
        """Create root through the localhost exception of whichever pod is primary."""
        rs_name = rs_name_of(pods)
        if self._done(CONDITION_USER_ROOT, rs_name):
            return

        data, _, _ = self.base.user_auth(USER_ROOT)
        js = script.CREATE_ROOT_USER % (data["MONGO_USER"], data["MONGO_PASSWORD"])

        error = UserBootstrapError("root user create failed")
        for pod in pod_filter(pods, not_arbiter, not_exporter):
            try:
                stdout = self._exec(pod, js)
            except ExecError as e:
                if script.NO_USERS_AUTHENTICATED in e.stdout:
                    # localhost exception already closed: root exists
                    logger.warning(f"Root user of {rs_name} already present: {e}")
                    self._mark(CONDITION_USER_ROOT, rs_name)
                    return
                if script.NOT_MASTER in e.stdout:
                    continue
                raise
            if script.CREATE_USER_SUCCESS in stdout:
                error = None
                break
            error = UserBootstrapError(f"create root user fail, stdout: {stdout}")

        if error is not None:
            raise error
        self._mark(CONDITION_USER_ROOT, rs_name)

    def create_cluster_user(self, pods, directory, user):
        rs_name = rs_name_of(pods)
        if user == USER_CLUSTER_MONITOR:
            if not self.cr.spec.metricsExporterSpec.enable:
                return
            cond_type = CONDITION_USER_CLUSTER_MONITOR
        else:
            cond_type = CONDITION_USER_CLUSTER_ADMIN

        if self._done(cond_type, rs_name):
            return

        user_data, _, _ = self.base.user_auth(user)
        with self.base.dial(hostdir.data_hosts(directory), user=USER_ROOT) as client:
            client.create_user_by_secret(user_data)
        self._mark(cond_type, rs_name)

    def create_or_update_db_user(self, pods, directory, need_update, password):
        db_user = self.cr.spec.dbUserSpec
        if not db_user.enable:
            return

        rs_name = rs_name_of(pods)
        with self.base.dial(hostdir.data_hosts(directory), user=USER_ROOT) as client:
            if self._done(CONDITION_USER_DB, rs_name):
                if need_update:
                    logger.info(f"DB {db_user.name} user {db_user.user} password changed")
                    client.change_user_password(db_user.user, password)
                return
            client.create_user(
                db_user.user, db_user.password, [{"role": READ_WRITE_ROLE, "db": db_user.name}]
            )
        self._mark(CONDITION_USER_DB, rs_name)
