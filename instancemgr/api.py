"""InstanceGroup resource types for the instancemgr.keikoproj.io/v1alpha1 API."""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, TypeVar, Union

log = logging.getLogger(__name__)

IntOrString = Union[int, str]

_T = TypeVar("_T")


@dataclass(frozen=True)
class GroupVersion:
    """An API group together with its version."""

    group: str
    version: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"


GROUP_VERSION = GroupVersion(group="instancemgr.keikoproj.io", version="v1alpha1")
INSTANCE_GROUP_RESOURCE = "instancegroups"
INSTANCE_GROUP_KIND = "InstanceGroup"


class ReconcileState(str, Enum):
    """Reconcile states an instance group moves through."""

    INIT = "Init"
    INIT_DELETE = "InitDelete"
    INIT_UPDATE = "InitUpdate"
    INIT_CREATE = "InitCreate"
    INIT_UPGRADE = "InitUpgrade"
    DELETING = "Deleting"
    DELETED = "Deleted"
    MODIFYING = "ReconcileModifying"
    MODIFIED = "ReconcileModified"
    LOCKED = "Locked"
    READY = "Ready"
    ERROR = "Error"


class ScalingConfigurationType(str, Enum):
    """How the scaling group's instances are configured."""

    LAUNCH_CONFIGURATION = "LaunchConfiguration"
    LAUNCH_TEMPLATE = "LaunchTemplate"


class ContainerRuntime(str, Enum):
    """Container runtimes a node can bootstrap with."""

    DOCKER = "dockerd"
    CONTAINERD = "containerd"


PRE_BOOTSTRAP_STAGE = "PreBootstrap"
POST_BOOTSTRAP_STAGE = "PostBootstrap"

LIFECYCLE_STATE_NORMAL = "normal"
LIFECYCLE_STATE_SPOT = "spot"
LIFECYCLE_STATE_MIXED = "mixed"

CRD_STRATEGY_NAME = "crd"
ROLLING_UPDATE_STRATEGY_NAME = "rollingupdate"
MANAGED_STRATEGY_NAME = "managed"

EKS_PROVISIONER_NAME = "eks"
EKS_MANAGED_PROVISIONER_NAME = "eks-managed"
EKS_FARGATE_PROVISIONER_NAME = "eks-fargate"

NODES_READY = "NodesReady"
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

FORBID_CONCURRENCY_POLICY = "forbid"
ALLOW_CONCURRENCY_POLICY = "allow"
REPLACE_CONCURRENCY_POLICY = "replace"

FILE_SYSTEM_TYPE_XFS = "xfs"
FILE_SYSTEM_TYPE_EXT4 = "ext4"

HOST_PLACEMENT_TENANCY_TYPE = "host"
DEFAULT_PLACEMENT_TENANCY_TYPE = "default"
DEDICATED_PLACEMENT_TENANCY_TYPE = "dedicated"

IMAGE_LATEST_VALUE = "latest"
IMAGE_SSM_PREFIX = "ssm://"

UPGRADE_LOCKED_ANNOTATION_KEY = "instancemgr.keikoproj.io/lock-upgrades"

LAUNCH_TEMPLATE_STRATEGY_CAPACITY_OPTIMIZED = "CapacityOptimized"
LAUNCH_TEMPLATE_STRATEGY_LOWEST_PRICE = "LowestPrice"
SUB_FAMILY_FLEXIBLE_INSTANCE_POOL = "SubFamilyFlexible"

LIFECYCLE_HOOK_RESULT_ABANDON = "ABANDON"
LIFECYCLE_HOOK_RESULT_CONTINUE = "CONTINUE"
LIFECYCLE_HOOK_TRANSITION_LAUNCH = "Launch"
LIFECYCLE_HOOK_TRANSITION_TERMINATE = "Terminate"
LIFECYCLE_HOOK_DEFAULT_HEARTBEAT_TIMEOUT = 300

DEFAULT_CRD_STRATEGY_MAX_RETRIES = 3

STRATEGIES = (CRD_STRATEGY_NAME, ROLLING_UPDATE_STRATEGY_NAME, MANAGED_STRATEGY_NAME)
PROVISIONERS = (
    EKS_PROVISIONER_NAME,
    EKS_MANAGED_PROVISIONER_NAME,
    EKS_FARGATE_PROVISIONER_NAME,
)
EKS_CONFIGURATION_TYPES = (
    ScalingConfigurationType.LAUNCH_CONFIGURATION,
    ScalingConfigurationType.LAUNCH_TEMPLATE,
)
ALLOWED_CONTAINER_RUNTIMES = (ContainerRuntime.CONTAINERD, ContainerRuntime.DOCKER)
ALLOWED_FILE_SYSTEM_TYPES = (FILE_SYSTEM_TYPE_XFS, FILE_SYSTEM_TYPE_EXT4)
ALLOWED_MIXED_POLICY_STRATEGIES = (
    LAUNCH_TEMPLATE_STRATEGY_CAPACITY_OPTIMIZED,
    LAUNCH_TEMPLATE_STRATEGY_LOWEST_PRICE,
)
ALLOWED_INSTANCE_POOLS = (SUB_FAMILY_FLEXIBLE_INSTANCE_POOL,)
LIFECYCLE_HOOK_ALLOWED_TRANSITIONS = (
    LIFECYCLE_HOOK_TRANSITION_LAUNCH,
    LIFECYCLE_HOOK_TRANSITION_TERMINATE,
)
LIFECYCLE_HOOK_ALLOWED_DEFAULT_RESULT = (
    LIFECYCLE_HOOK_RESULT_ABANDON,
    LIFECYCLE_HOOK_RESULT_CONTINUE,
)
LAUNCH_TEMPLATE_PLACEMENT_TENANCY_TYPES = (
    HOST_PLACEMENT_TENANCY_TYPE,
    DEFAULT_PLACEMENT_TENANCY_TYPE,
    DEDICATED_PLACEMENT_TENANCY_TYPE,
)


# --- field declarations carrying their wire names -----------------------------


def _meta(name: str, omit: bool, pointer: bool, kind: Any, many: bool) -> dict:
    return {"json": name, "omit": omit, "pointer": pointer, "kind": kind, "many": many}


def _str(name: str, *, omit: bool = True) -> Any:
    return field(default="", metadata=_meta(name, omit, False, None, False))


def _int(name: str, *, omit: bool = True) -> Any:
    return field(default=0, metadata=_meta(name, omit, False, None, False))


def _bool(name: str, *, omit: bool = True) -> Any:
    return field(default=False, metadata=_meta(name, omit, False, None, False))


def _list(name: str, *, kind: Any = None, omit: bool = True) -> Any:
    return field(
        default_factory=list, metadata=_meta(name, omit, False, kind, kind is not None)
    )


def _map(name: str, *, omit: bool = True) -> Any:
    return field(default_factory=dict, metadata=_meta(name, omit, False, None, False))


def _ptr(name: str, *, kind: Any = None, many: bool = False, omit: bool = True) -> Any:
    return field(default=None, metadata=_meta(name, omit, True, kind, many))


def _struct(name: str, kind: Any, *, omit: bool = True) -> Any:
    return field(default_factory=kind, metadata=_meta(name, omit, False, kind, False))


def _encode_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "__dataclass_fields__"):
        return _encode(value)
    if isinstance(value, list):
        return [_encode_value(item) for item in value]
    if isinstance(value, dict):
        return {key: _encode_value(item) for key, item in value.items()}
    return value


def _encode(obj: Any) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for spec in fields(obj):
        meta = spec.metadata
        if "json" not in meta:
            continue
        value = getattr(obj, spec.name)
        if meta["omit"]:
            empty = value is None if meta["pointer"] else not value
            if empty and not hasattr(value, "__dataclass_fields__"):
                continue
        out[meta["json"]] = _encode_value(value)
    return out


def _decode_value(meta: Mapping[str, Any], raw: Any) -> Any:
    kind = meta["kind"]
    if raw is None or kind is None:
        return copy.deepcopy(raw)
    if meta["many"]:
        if not isinstance(raw, list):
            raise ValueError(f"field '{meta['json']}' must be a list")
        return [None if item is None else _decode(kind, item) for item in raw]
    return _decode(kind, raw)


def _decode(cls: type[_T], data: Any) -> _T:
    if not isinstance(data, Mapping):
        raise ValueError(f"expected an object for {cls.__name__}, got {type(data).__name__}")
    kwargs: dict[str, Any] = {}
    for spec in fields(cls):  # type: ignore[arg-type]
        meta = spec.metadata
        if "json" not in meta or meta["json"] not in data:
            continue
        raw = data[meta["json"]]
        if raw is None and not meta["pointer"]:
            continue
        kwargs[spec.name] = _decode_value(meta, raw)
    return cls(**kwargs)


# --- upgrade strategies -------------------------------------------------------


@dataclass
class RollingUpdateStrategy:
    """Rolling update settings; max_unavailable is a count or a percentage."""

    max_unavailable: IntOrString | None = _ptr("maxUnavailable")


@dataclass
class CRDUpdateStrategy:
    """Upgrade by submitting a custom resource and watching its status."""

    spec: str = _str("spec")
    crd_name: str = _str("crdName")
    concurrency_policy: str = _str("concurrencyPolicy")
    max_retries: int | None = _ptr("maxRetries")
    status_json_path: str = _str("statusJSONPath")
    status_success_string: str = _str("statusSuccessString")
    status_failure_string: str = _str("statusFailureString")


@dataclass
class AwsUpgradeStrategy:
    """The upgrade strategy of an AWS instance group."""

    type: str = _str("type")
    crd: CRDUpdateStrategy | None = _ptr("crd", kind=CRDUpdateStrategy)
    rolling_update: RollingUpdateStrategy | None = _ptr(
        "rollingUpdate", kind=RollingUpdateStrategy
    )


DEFAULT_ROLLING_UPDATE_STRATEGY = RollingUpdateStrategy(max_unavailable=1)


# --- EKS specs ----------------------------------------------------------------


@dataclass
class BootstrapOptions:
    max_pods: int = _int("maxPods")
    container_runtime: str = _str("containerRuntime")


@dataclass
class WarmPoolSpec:
    max_size: int = _int("maxSize")
    min_size: int = _int("minSize")


@dataclass
class InstanceTypeSpec:
    type: str = _str("type", omit=False)
    weight: int = _int("weight")


@dataclass
class MixedInstancesPolicySpec:
    strategy: str | None = _ptr("strategy")
    spot_pools: int | None = _ptr("spotPools")
    base_capacity: int | None = _ptr("baseCapacity")
    spot_ratio: IntOrString | None = _ptr("spotRatio")
    instance_pool: str | None = _ptr("instancePool")
    instance_types: list[InstanceTypeSpec] | None = _ptr(
        "instanceTypes", kind=InstanceTypeSpec, many=True
    )


@dataclass
class PlacementSpec:
    availability_zone: str = _str("availabilityZone")
    host_resource_group_arn: str = _str("hostResourceGroupArn")
    tenancy: str = _str("tenancy")


@dataclass
class MetadataOptions:
    http_endpoint: str = _str("httpEndpoint")
    http_tokens: str = _str("httpTokens")
    http_put_hop_limit: int = _int("httpPutHopLimit")


@dataclass
class LifecycleHookSpec:
    name: str = _str("name", omit=False)
    lifecycle: str = _str("lifecycle", omit=False)
    default_result: str = _str("defaultResult")
    heartbeat_timeout: int = _int("heartbeatTimeout")
    notification_arn: str = _str("notificationArn")
    metadata: str = _str("metadata")
    role_arn: str = _str("roleArn")

    def exists_in(self, hooks: Iterable[LifecycleHookSpec]) -> bool:
        """Return True if an identical hook is among *hooks*."""
        return any(hook == self for hook in hooks)


@dataclass
class UserDataStage:
    name: str = _str("name")
    stage: str = _str("stage", omit=False)
    data: str = _str("data", omit=False)


@dataclass
class NodeVolumeMountOptions:
    file_system: str = _str("fileSystem")
    mount: str = _str("mount")
    persistance: bool | None = _ptr("persistance")


@dataclass
class NodeVolume:
    name: str = _str("name", omit=False)
    type: str = _str("type", omit=False)
    size: int = _int("size", omit=False)
    iops: int = _int("iops")
    throughput: int = _int("throughput")
    delete_on_termination: bool | None = _ptr("deleteOnTermination")
    encrypted: bool | None = _ptr("encrypted")
    snapshot_id: str = _str("snapshotId")
    mount_options: NodeVolumeMountOptions | None = _ptr(
        "mountOptions", kind=NodeVolumeMountOptions
    )


@dataclass
class EKSConfiguration:
    """Node configuration of an eks instance group."""

    cluster_name: str = _str("clusterName")
    key_pair_name: str = _str("keyPairName")
    image: str = _str("image")
    instance_type: str = _str("instanceType")
    security_groups: list[str] = _list("securityGroups")
    volumes: list[NodeVolume] = _list("volumes", kind=NodeVolume)
    subnets: list[str] = _list("subnets")
    suspend_processes: list[str] = _list("suspendProcesses")
    bootstrap_arguments: str = _str("bootstrapArguments")
    bootstrap_options: BootstrapOptions | None = _ptr(
        "bootstrapOptions", kind=BootstrapOptions
    )
    spot_price: str = _str("spotPrice")
    tags: list[dict[str, str]] = _list("tags")
    labels: dict[str, str] = _map("labels")
    taints: list[dict[str, Any]] = _list("taints")
    user_data: list[UserDataStage] = _list("userData", kind=UserDataStage)
    role_name: str = _str("roleName")
    instance_profile_name: str = _str("instanceProfileName")
    managed_policies: list[str] = _list("managedPolicies")
    metrics_collection: list[str] = _list("metricsCollection")
    lifecycle_hooks: list[LifecycleHookSpec] = _list(
        "lifecycleHooks", kind=LifecycleHookSpec
    )
    mixed_instances_policy: MixedInstancesPolicySpec | None = _ptr(
        "mixedInstancesPolicy", kind=MixedInstancesPolicySpec
    )
    license_specifications: list[str] = _list("licenseSpecifications")
    placement: PlacementSpec | None = _ptr("placement", kind=PlacementSpec)
    metadata_options: MetadataOptions | None = _ptr(
        "metadataOptions", kind=MetadataOptions
    )


@dataclass
class EKSSpec:
    max_size: int = _int("maxSize")
    min_size: int = _int("minSize")
    warm_pool: WarmPoolSpec | None = _ptr("warmPool", kind=WarmPoolSpec)
    type: str = _str("type")
    configuration: EKSConfiguration | None = _ptr(
        "configuration", kind=EKSConfiguration, omit=False
    )


@dataclass
class EKSManagedConfiguration:
    cluster_name: str = _str("clusterName")
    vol_size: int = _int("volSize")
    instance_type: str = _str("instanceType")
    node_labels: dict[str, str] = _map("nodeLabels")
    node_role: str = _str("nodeRole")
    security_groups: list[str] = _list("securityGroups")
    key_pair_name: str = _str("keyPairName")
    tags: list[dict[str, str]] = _list("tags")
    subnets: list[str] = _list("subnets")
    ami_type: str = _str("amiType")
    release_version: str = _str("releaseVersion")
    version: str = _str("version")


@dataclass
class EKSManagedSpec:
    max_size: int = _int("maxSize", omit=False)
    min_size: int = _int("minSize", omit=False)
    configuration: EKSManagedConfiguration | None = _ptr(
        "configuration", kind=EKSManagedConfiguration, omit=False
    )


@dataclass
class EKSFargateSelectors:
    namespace: str = _str("namespace", omit=False)
    labels: dict[str, str] = _map("labels")


@dataclass
class EKSFargateSpec:
    cluster_name: str = _str("clusterName", omit=False)
    pod_execution_role_arn: str = _str("podExecutionRoleArn")
    subnets: list[str] = _list("subnets")
    selectors: list[EKSFargateSelectors] = _list(
        "selectors", kind=EKSFargateSelectors, omit=False
    )
    tags: list[dict[str, str]] = _list("tags")


@dataclass
class InstanceGroupSpec:
    provisioner: str = _str("provisioner")
    eks_managed: EKSManagedSpec | None = _ptr("eks-managed", kind=EKSManagedSpec)
    eks_fargate: EKSFargateSpec | None = _ptr("eks-fargate", kind=EKSFargateSpec)
    eks: EKSSpec | None = _ptr("eks", kind=EKSSpec)
    strategy: AwsUpgradeStrategy = _struct("strategy", AwsUpgradeStrategy)


# --- status -------------------------------------------------------------------


@dataclass
class InstanceGroupCondition:
    type: str = _str("type")
    status: str = _str("status")


@dataclass
class InstanceGroupStatus:
    current_state: str = _str("currentState")
    current_min: int = _int("currentMin")
    current_max: int = _int("currentMax")
    active_launch_configuration_name: str = _str("activeLaunchConfigurationName")
    active_launch_template_name: str = _str("activeLaunchTemplateName")
    latest_template_version: str = _str("latestTemplateVersion")
    active_scaling_group_name: str = _str("activeScalingGroupName")
    nodes_arn: str = _str("nodesInstanceRoleArn")
    strategy_resource_name: str = _str("strategyResourceName")
    strategy_resource_namespace: str = _str("strategyResourceNamespace")
    strategy_retry_count: int = _int("strategyRetryCount")
    using_spot_recommendation: bool = _bool("usingSpotRecommendation")
    lifecycle: str = _str("lifecycle")
    config_hash: str = _str("configMD5")
    conditions: list[InstanceGroupCondition] = _list(
        "conditions", kind=InstanceGroupCondition
    )
    provisioner: str = _str("provisioner")
    strategy: str = _str("strategy")

    def set_active_launch_configuration_name(self, name: str) -> None:
        """Make *name* active, clearing any launch template state."""
        self.active_launch_configuration_name = name
        self.active_launch_template_name = ""
        self.latest_template_version = ""

    def set_active_launch_template_name(self, name: str) -> None:
        """Make *name* active, clearing any launch configuration name."""
        self.active_launch_template_name = name
        self.active_launch_configuration_name = ""

    def increment_strategy_retry_count(self) -> None:
        self.strategy_retry_count += 1

    def nodes_ready_condition(self) -> str:
        """Return the status of the NodesReady condition, "False" if absent."""
        for condition in self.conditions:
            if condition.type == NODES_READY:
                return condition.status
        return CONDITION_FALSE


# --- the resource -------------------------------------------------------------


@dataclass
class ObjectMeta:
    name: str = _str("name")
    namespace: str = _str("namespace")
    annotations: dict[str, str] = _map("annotations")
    labels: dict[str, str] = _map("labels")
    finalizers: list[str] = _list("finalizers")
    resource_version: str = _str("resourceVersion")
    creation_timestamp: str | None = _ptr("creationTimestamp")
    deletion_timestamp: str | None = _ptr("deletionTimestamp")


@dataclass
class InstanceGroup:
    """An instance group resource."""

    api_version: str = field(
        default=GROUP_VERSION.api_version,
        metadata=_meta("apiVersion", True, False, None, False),
    )
    kind: str = field(
        default=INSTANCE_GROUP_KIND, metadata=_meta("kind", True, False, None, False)
    )
    metadata: ObjectMeta = _struct("metadata", ObjectMeta, omit=False)
    spec: InstanceGroupSpec = _struct("spec", InstanceGroupSpec, omit=False)
    status: InstanceGroupStatus = _struct("status", InstanceGroupStatus)

    def namespaced_name(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"

    def locked(self) -> bool:
        """Return True if upgrades are locked by annotation."""
        value = self.metadata.annotations.get(UPGRADE_LOCKED_ANNOTATION_KEY)
        return value is not None and value.casefold() == "true"

    def get_state(self) -> ReconcileState | str:
        """Return the current reconcile state."""
        try:
            return ReconcileState(self.status.current_state)
        except ValueError:
            return self.status.current_state

    def set_state(self, state: ReconcileState | str) -> None:
        value = state.value if isinstance(state, Enum) else state
        log.info(
            "state transition occured instancegroup=%s state=%s previousState=%s",
            self.namespaced_name(),
            value,
            self.status.current_state,
        )
        self.status.current_state = value

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> InstanceGroup:
        """Build an instance group from its JSON-style document."""
        return _decode(cls, data)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-style document of this instance group."""
        return _encode(self)