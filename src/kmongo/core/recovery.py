"""Self-heal of a replica set whose configuration lists members without a role."""

import logging

from kmongo.core import hostdir
from kmongo.core.base import REPLSET_NAME
from kmongo.core.pods import is_arbiter, not_terminating, pod_filter
from kmongo.errors import KmongoError
from kmongo.mongo.models import Member

logger = logging.getLogger(__name__)


class ClusterRecoveryEngine:
    """Removes and re-admits members that lost their role.

    Elections are left to mongod; only the configuration is repaired so it
    matches the members that can actually be reached.
    """

    def __init__(self, base):
        self.base = base

    def survey(self, addrs):
        """(unknown, healthy) hosts from the first node that answers directly."""
        for addr in addrs:
            try:
                with self.base.mongo_client_one_node(addr) as client:
                    return client.check_member_status()
            except KmongoError as e:
                logger.warning(f"Member {addr} could not report status: {e}")
        return None

    def restore_repl_set(self, pods):
        directory = self.base.load_directory()
        surveyed = self.survey(hostdir.data_hosts(directory))
        if surveyed is None:
            logger.error(
                f"No surviving node of {self.base.cr.name} answered, manual intervention needed"
            )
            return
        unknown, healthy = surveyed
        if not unknown:
            return
        if not healthy:
            logger.error(f"{self.base.cr.name} has no healthy member to repair the config from")
            return

        for pod in pod_filter(pods, not_terminating):
            if is_arbiter(pod):
                continue
            host = self.base.external_host(pod)
            if host not in unknown:
                continue
            logger.info(f"Re-admitting member {host} of {self.base.cr.name}")
            self.remove_via_healthy(host, healthy)
            self.readmit(host, directory, healthy[0])

    def remove_via_healthy(self, host, healthy):
        for addr in healthy:
            try:
                with self.base.mongo_client_one_node(addr) as client:
                    client.remove_members([Member(host=host)])
                return
            except KmongoError as e:
                logger.warning(f"Removing {host} through {addr} failed: {e}")
        logger.error(f"No healthy member accepted removal of {host}")

    def readmit(self, host, directory, write_node):
        me = hostdir.resolve(
            directory,
            REPLSET_NAME,
            hostdir.SCOPE_SELF,
            my_host=host,
            arbiter=self.base.cr.spec.arbiter,
        )
        if not me:
            logger.warning(f"Member {host} is not published in the host directory")
            return
        with self.base.mongo_client_one_node(write_node) as client:
            client.add_members(me)
