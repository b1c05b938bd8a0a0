"""Replica set topology."""

import logging

from kubernetes.client.exceptions import ApiException

from kmongo.core.bootstrap import Bootstrapper
from kmongo.core.recovery import ClusterRecoveryEngine
from kmongo.core.replset import ReplicaSetReconciler
from kmongo.core.restart import RestartCoordinator
from kmongo.errors import ObjSyncError
from kmongo.models.mongodb import STATE_RECONCILING, TYPE_REPLICA_SET
from kmongo.services.builder import USER_CLUSTER_ADMIN, USER_CLUSTER_MONITOR, USER_ROOT

from .base import MongoInstance
from .registry import ModeRegistry

logger = logging.getLogger(__name__)

BUILTIN_USERS = (USER_ROOT, USER_CLUSTER_ADMIN, USER_CLUSTER_MONITOR)


@ModeRegistry.register(TYPE_REPLICA_SET)
class ReplicaSetMode(MongoInstance):
    def __init__(self, base):
        super().__init__(base)
        self.replset = ReplicaSetReconciler(base)
        self.bootstrap = Bootstrapper(base)
        self.restarter = RestartCoordinator(base)
        self.recovery = ClusterRecoveryEngine(base)

    def pre_config(self):
        spec = self.cr.spec
        ns = self.base.namespace
        store = self.base.store
        self.base.update_revision()

        try:
            services = store.list_services(ns, self.base.instance_labels())
            directory = store.get_config_map(ns, spec.memberConfigRef)
            custom = None
            if spec.customConfigRef:
                custom = store.get_config_map(ns, spec.customConfigRef)
        except ApiException as e:
            raise ObjSyncError(f"read shared objects of {self.cr.name}: {e.reason}") from e

        if (
            len(services) < spec.members
            or directory is None
            or (spec.customConfigRef and custom is None)
        ):
            logger.info(f"{self.cr.name} is waiting for member services or config maps")
            self.base.update_state(STATE_RECONCILING)

        builder = self.base.builder
        self._ensure_secret(builder.keyfile_secret_name(), builder.keyfile_secret)
        for user in BUILTIN_USERS:
            self._ensure_secret(builder.user_secret_name(user), lambda u=user: builder.admin_secret(u))
        if spec.imagePullSecret.username and spec.imagePullSecret.password:
            self._ensure_secret(builder.image_pull_secret_name(), builder.image_pull_secret)

    def _ensure_secret(self, name, build):
        ns = self.base.namespace
        try:
            if self.base.store.get_secret(ns, name) is not None:
                return
            self.base.store.create_secret(ns, build())
        except ApiException as e:
            if e.status != 409:
                raise ObjSyncError(f"create secret {name}: {e.reason}") from e
        logger.info(f"Secret {name} ensured")

    def sync(self):
        self.replset.sync_member()

    def post_config(self):
        spec = self.cr.spec
        pods = self.base.list_pods(self.base.replset_labels())
        directory = self.base.load_directory()
        self.base.check_pods_ready(spec.members, pods)

        self.bootstrap.repl_set_init(pods, directory)

        db_user = spec.dbUserSpec
        stored = self.cr.status.currentInfo.dbUserPassword
        need_update = bool(stored) and db_user.password != stored
        self.bootstrap.create_mongo_user(pods, directory, need_update, db_user.password)
        if db_user.enable:
            self.base.update_current_db_user_pw(db_user.password)

        self.base.update_rs_status()
        self.base.check_member_role()

    def restart(self):
        return self.restarter.restart()

    def teardown(self):
        self.replset.teardown()

    def recover(self, pods):
        self.recovery.restore_repl_set(pods)
