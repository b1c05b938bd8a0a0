"""Exceptions raised by the reconcile core."""


class KmongoError(Exception):
    """Base class for all operator errors."""


class WaitRequeue(KmongoError):
    """The cluster is not ready yet; retry the pass soon without flagging an error."""


class ObjSyncError(KmongoError):
    """A Kubernetes object could not be created, updated or deleted."""


class DirectoryUnavailable(KmongoError):
    """The host directory ConfigMap could not be fetched."""


class DirectoryMalformed(KmongoError):
    """A host directory entry could not be parsed."""


class MongoError(KmongoError):
    """Base class for failures reported by or while talking to mongod."""


class CommandNotOk(MongoError):
    """mongod answered a command with a non-success status."""

    def __init__(self, message, code=None, details=None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


class TransportError(MongoError):
    """mongod could not be reached or did not answer in time."""


class RsInitFailed(MongoError):
    """Replica set initiation did not report success."""


class RsStatusNotOk(MongoError):
    """rs.status() did not report ok after initiation."""


class UserBootstrapError(MongoError):
    """A bootstrap user could not be created."""


class MemberRoleMismatch(MongoError):
    """A member reports a state code that disagrees with its role."""


class ExecError(KmongoError):
    """A command executed inside a pod exited with a failure."""

    def __init__(self, message, stdout="", stderr=""):
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr


class UnknownTopology(KmongoError):
    """spec.type names a topology mode that is not registered."""


class UnknownRestartState(KmongoError):
    """status.restartState holds a value outside the restart state machine."""
