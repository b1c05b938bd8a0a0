"""MongoDB custom resource models."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from kmongo.crd.base import CRDMetadata, CRDSpec, CRDStatus
from kmongo.crd.registry import CRDRegistry
from kmongo.mongo.models import MemberStatus

GROUP = "middleware.fedstate.io"
VERSION = "v1alpha1"
KIND = "MongoDB"
PLURAL = "mongodbs"

TYPE_REPLICA_SET = "ReplicaSet"

# status.state
STATE_RUNNING = "Running"
STATE_PAUSE = "Pause"
STATE_RECONCILING = "Reconciling"
STATE_ERROR = "Error"
STATE_UNKNOWN = "Unknown"

# status.restartState
RESTART_NOT_IN_PROCESS = "NotInProcess"
RESTART_SECONDARY_DELETED = "SecondaryDeleted"
RESTART_PRIMARY_DELETED = "PrimaryDeleted"

# condition types, keyed together with the replica set name in message
CONDITION_USER_ROOT = "userRoot"
CONDITION_USER_CLUSTER_ADMIN = "userClusterAdmin"
CONDITION_USER_CLUSTER_MONITOR = "userClusterMonitor"
CONDITION_USER_DB = "userDB"
CONDITION_RS_INIT = "rsInit"

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"

DEFAULT_CPU = "1000m"
DEFAULT_MEMORY = "1024Mi"
DEFAULT_EXPORTER_CPU = "50m"
DEFAULT_EXPORTER_MEMORY = "100Mi"


class ResourceSetting(CRDSpec):
    """Container requests and limits."""

    requests: Dict[str, str] = Field(
        default_factory=lambda: {"cpu": DEFAULT_CPU, "memory": DEFAULT_MEMORY}
    )
    limits: Dict[str, str] = Field(
        default_factory=lambda: {"cpu": DEFAULT_CPU, "memory": DEFAULT_MEMORY}
    )


class ConfigVar(CRDSpec):
    name: str
    value: str = ""


class MetricsExporterSpec(CRDSpec):
    enable: bool = Field(default=False, description="Run a mongodb exporter sidecar")
    resources: ResourceSetting = Field(
        default_factory=lambda: ResourceSetting(
            requests={"cpu": DEFAULT_EXPORTER_CPU, "memory": DEFAULT_EXPORTER_MEMORY},
            limits={"cpu": DEFAULT_EXPORTER_CPU, "memory": DEFAULT_EXPORTER_MEMORY},
        )
    )


class DBUserSpec(CRDSpec):
    enable: bool = Field(default=False, description="Create an application database user")
    name: str = Field(default="", description="Database the user is granted readWrite on")
    user: str = ""
    password: str = ""


class PersistenceSpec(CRDSpec):
    storage: str = Field(default="1Gi", description="Volume size per member")
    storageClassName: Optional[str] = Field(
        default=None, description="Storage class; cluster default when empty"
    )


class ImagePullSecretSpec(CRDSpec):
    username: str = ""
    password: str = ""


class PodSpec(CRDSpec):
    """Scheduling fields copied into every member pod."""

    model_config = ConfigDict(extra="allow")

    nodeSelector: Dict[str, str] = Field(default_factory=dict)
    affinity: Dict[str, Any] = Field(default_factory=dict)
    tolerations: List[Dict[str, Any]] = Field(default_factory=list)
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)


class CurrentInfo(BaseModel):
    """Settings last applied to the running members."""

    model_config = ConfigDict(extra="allow")

    dbUserPassword: str = ""
    resources: Optional[ResourceSetting] = None
    customConfig: str = ""
    members: int = 0


class MongoDBStatus(CRDStatus):
    """Observed state, written only by the operator."""

    state: str = STATE_UNKNOWN
    restartState: str = RESTART_NOT_IN_PROCESS
    internalAddress: str = ""
    externalAddress: str = ""
    replset: List[MemberStatus] = Field(default_factory=list)
    currentRevision: str = ""
    currentInfo: CurrentInfo = Field(default_factory=CurrentInfo)


@CRDRegistry.register(GROUP, VERSION, KIND, PLURAL, status=MongoDBStatus)
class MongoDBSpec(CRDSpec):
    """Desired state of a MongoDB replica set."""

    type: str = Field(default=TYPE_REPLICA_SET, description="Topology mode")
    members: int = Field(default=1, ge=0, le=50, description="Number of data members")
    arbiter: bool = Field(default=False, description="Run an arbiter member")
    pause: bool = Field(default=False, description="Stop reconciling")
    rsInit: bool = Field(default=True, description="Initiate the replica set from the operator")
    rootPassword: str = Field(default="123456", description="Password of the root user")
    image: Optional[str] = Field(default=None, description="mongod image")
    imagePullPolicy: str = Field(default="IfNotPresent")
    imagePullSecret: ImagePullSecretSpec = Field(default_factory=ImagePullSecretSpec)
    memberConfigRef: str = Field(
        default="hostconf", description="ConfigMap publishing member host:port entries"
    )
    customConfigRef: Optional[str] = Field(
        default=None, description="ConfigMap holding a mongod.conf"
    )
    config: List[ConfigVar] = Field(default_factory=list)
    resources: ResourceSetting = Field(default_factory=ResourceSetting)
    persistence: PersistenceSpec = Field(default_factory=PersistenceSpec)
    metricsExporterSpec: MetricsExporterSpec = Field(default_factory=MetricsExporterSpec)
    dbUserSpec: DBUserSpec = Field(default_factory=DBUserSpec)
    podSpec: PodSpec = Field(default_factory=PodSpec)


class MongoDB(BaseModel):
    """A MongoDB object as read from the API server."""

    model_config = ConfigDict(extra="ignore")

    metadata: CRDMetadata
    spec: MongoDBSpec = Field(default_factory=MongoDBSpec)
    status: MongoDBStatus = Field(default_factory=MongoDBStatus)

    @classmethod
    def from_body(cls, body):
        body = dict(body)
        return cls(
            metadata=body.get("metadata") or {},
            spec=body.get("spec") or {},
            status=body.get("status") or {},
        )

    @property
    def name(self):
        return self.metadata.name

    @property
    def namespace(self):
        return self.metadata.namespace

    @property
    def labels(self):
        return self.metadata.labels

    def owner_reference(self):
        return {
            "apiVersion": f"{GROUP}/{VERSION}",
            "kind": KIND,
            "name": self.metadata.name,
            "uid": self.metadata.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }

    def to_body(self):
        """Full object for a compare-and-write status replace."""
        return {
            "apiVersion": f"{GROUP}/{VERSION}",
            "kind": KIND,
            "metadata": {
                "name": self.metadata.name,
                "namespace": self.metadata.namespace,
                "resourceVersion": self.metadata.resourceVersion,
            },
            "spec": self.spec.model_dump(exclude_none=True),
            "status": self.status.model_dump(mode="json", by_alias=True, exclude_none=True),
        }
