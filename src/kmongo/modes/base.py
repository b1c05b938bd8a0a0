"""Topology mode interface."""

from abc import ABC, abstractmethod
import logging

logger = logging.getLogger(__name__)


class MongoInstance(ABC):
    """One MongoDB topology, driven through a reconcile pass.

    A pass calls restart first, then pre_config, sync and post_config in
    that order. teardown runs once when the resource is deleted.
    """

    def __init__(self, base):
        self.base = base

    @property
    def cr(self):
        return self.base.cr

    @abstractmethod
    def pre_config(self):
        """Prepare secrets and check shared objects before members are synced."""
        pass

    @abstractmethod
    def sync(self):
        """Converge workloads and membership."""
        pass

    @abstractmethod
    def post_config(self):
        """One-time bootstrap and status snapshots once members are up."""
        pass

    @abstractmethod
    def restart(self):
        """Advance a rolling restart by one phase.

        Returns:
            RestartResult
        """
        pass

    @abstractmethod
    def teardown(self):
        """Remove every workload of the resource."""
        pass

    def recover(self, pods):
        """Best-effort repair after a failed pass; topologies without one do nothing."""
        logger.debug(f"No recovery for {type(self).__name__}")
