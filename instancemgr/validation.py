"""Validation and defaulting of InstanceGroup specs."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from instancemgr.api import (
    ALLOW_CONCURRENCY_POLICY,
    ALLOWED_CONTAINER_RUNTIMES,
    ALLOWED_INSTANCE_POOLS,
    ALLOWED_MIXED_POLICY_STRATEGIES,
    CRD_STRATEGY_NAME,
    DEFAULT_CRD_STRATEGY_MAX_RETRIES,
    EKS_FARGATE_PROVISIONER_NAME,
    EKS_MANAGED_PROVISIONER_NAME,
    EKS_PROVISIONER_NAME,
    FORBID_CONCURRENCY_POLICY,
    HOST_PLACEMENT_TENANCY_TYPE,
    LAUNCH_TEMPLATE_PLACEMENT_TENANCY_TYPES,
    LAUNCH_TEMPLATE_STRATEGY_CAPACITY_OPTIMIZED,
    LAUNCH_TEMPLATE_STRATEGY_LOWEST_PRICE,
    LIFECYCLE_HOOK_ALLOWED_DEFAULT_RESULT,
    LIFECYCLE_HOOK_ALLOWED_TRANSITIONS,
    LIFECYCLE_HOOK_DEFAULT_HEARTBEAT_TIMEOUT,
    LIFECYCLE_HOOK_RESULT_ABANDON,
    LIFECYCLE_HOOK_TRANSITION_LAUNCH,
    LIFECYCLE_HOOK_TRANSITION_TERMINATE,
    MANAGED_STRATEGY_NAME,
    PROVISIONERS,
    REPLACE_CONCURRENCY_POLICY,
    ROLLING_UPDATE_STRATEGY_NAME,
    STRATEGIES,
    CRDUpdateStrategy,
    EKSConfiguration,
    EKSSpec,
    InstanceGroup,
    MixedInstancesPolicySpec,
    NodeVolume,
    PlacementSpec,
    ScalingConfigurationType,
)
from instancemgr.utils import contains_equal_fold, int_in_range

CONFIGURATION_ALLOWED_VOLUME_TYPES = ("standard", "gp2", "io1", "st1", "sc1")
TEMPLATE_ALLOWED_VOLUME_TYPES = ("standard", "gp2", "gp3", "io1", "io2", "st1", "sc1")
VOLUME_TYPES_WITH_PROVISIONED_IOPS = ("io1", "io2", "gp3")
VOLUME_TYPES_WITH_PROVISIONED_THROUGHPUT = ("gp3",)

AUTOSCALING_LIFECYCLE_LAUNCH = "autoscaling:EC2_INSTANCE_LAUNCHING"
AUTOSCALING_LIFECYCLE_TERMINATE = "autoscaling:EC2_INSTANCE_TERMINATING"

DEFAULT_AUTOSCALING_METRICS = (
    "GroupMinSize",
    "GroupMaxSize",
    "GroupDesiredCapacity",
    "GroupInServiceInstances",
    "GroupPendingInstances",
    "GroupStandbyInstances",
    "GroupTerminatingInstances",
    "GroupInServiceCapacity",
    "GroupPendingCapacity",
    "GroupTerminatingCapacity",
    "GroupStandbyCapacity",
    "GroupTotalInstances",
    "GroupTotalCapacity",
)
DEFAULT_SUSPEND_PROCESSES = (
    "Launch",
    "Terminate",
    "AddToLoadBalancer",
    "AlarmNotification",
    "AZRebalance",
    "HealthCheck",
    "InstanceRefresh",
    "ReplaceUnhealthy",
    "ScheduledActions",
)

DEFAULT_VOLUME_NAME = "/dev/xvda"
DEFAULT_VOLUME_TYPE = "gp2"
DEFAULT_VOLUME_SIZE = 32

_ARN_SECTIONS = 6
_LC = ScalingConfigurationType.LAUNCH_CONFIGURATION.value
_LT = ScalingConfigurationType.LAUNCH_TEMPLATE.value


class ValidationError(ValueError):
    """Raised when an instance group spec is invalid."""


@dataclass
class ValidationOverrides:
    """Cluster-wide defaults applied while validating."""

    scaling_configuration_override: ScalingConfigurationType | str | None = None


def _value(item: Any) -> Any:
    return item.value if isinstance(item, Enum) else item


def _listing(items: Iterable[Any]) -> str:
    return "[" + " ".join(str(_value(item)) for item in items) + "]"


def is_arn(value: str) -> bool:
    """Return True if *value* has the shape of an ARN."""
    return value.startswith("arn:") and value.count(":") >= _ARN_SECTIONS - 1


def validate_crd_strategy(strategy: CRDUpdateStrategy) -> None:
    """Check a CRD upgrade strategy, filling in its defaults."""
    if not strategy.spec:
        raise ValidationError("spec is empty")
    allowed = (
        REPLACE_CONCURRENCY_POLICY,
        ALLOW_CONCURRENCY_POLICY,
        FORBID_CONCURRENCY_POLICY,
    )
    if not contains_equal_fold(allowed, strategy.concurrency_policy):
        strategy.concurrency_policy = FORBID_CONCURRENCY_POLICY
    if strategy.max_retries is None:
        strategy.max_retries = DEFAULT_CRD_STRATEGY_MAX_RETRIES
    if not strategy.crd_name:
        raise ValidationError("crdName is empty")
    if not strategy.status_json_path:
        raise ValidationError("statusJSONPath is empty")
    if not strategy.status_success_string:
        raise ValidationError("statusSuccessString is empty")
    if not strategy.status_failure_string:
        raise ValidationError("statusFailureString is empty")


def validate_placement(placement: PlacementSpec | None) -> None:
    """Check a launch template placement."""
    if placement is None:
        return
    if not contains_equal_fold(LAUNCH_TEMPLATE_PLACEMENT_TENANCY_TYPES, placement.tenancy):
        raise ValidationError(
            "validation failed, Tenancy must be one of default, dedicated, host"
        )
    arn = placement.host_resource_group_arn
    if arn and not is_arn(arn):
        raise ValidationError(
            "validation failed, HostResourceGroupArn must be a valid dedicated "
            "HostResourceGroup ARN"
        )
    if arn and placement.tenancy != HOST_PLACEMENT_TENANCY_TYPE:
        raise ValidationError(
            'validation failed, Tenancy must be "host" when HostResourceGroupArn is set'
        )


def validate_mixed_instances_policy(policy: MixedInstancesPolicySpec) -> None:
    """Check a mixed instances policy, filling in its defaults."""
    if policy.strategy is None:
        policy.strategy = (
            LAUNCH_TEMPLATE_STRATEGY_LOWEST_PRICE
            if policy.spot_pools is not None
            else LAUNCH_TEMPLATE_STRATEGY_CAPACITY_OPTIMIZED
        )
    if not contains_equal_fold(ALLOWED_MIXED_POLICY_STRATEGIES, policy.strategy):
        raise ValidationError(
            "validation failed, mixedInstancesPolicy.Strategy must either be "
            f"LowestPrice or CapacityOptimized, got '{policy.strategy}'"
        )
    if policy.spot_pools is not None:
        if not int_in_range(policy.spot_pools, 1, 20):
            # out of range: leave unset so the provider default applies
            policy.spot_pools = None
        if policy.strategy.casefold() != LAUNCH_TEMPLATE_STRATEGY_LOWEST_PRICE.casefold():
            raise ValidationError(
                "validation failed, can only use spotPools with LowestPrice strategy"
            )
    if policy.instance_types is not None:
        for instance_type in policy.instance_types:
            if instance_type is not None and instance_type.weight == 0:
                instance_type.weight = 1
    elif policy.instance_pool is None:
        raise ValidationError(
            "validation failed, must provide either instancePool or instanceTypes "
            "when using mixedInstancesPolicy"
        )
    elif not contains_equal_fold(ALLOWED_INSTANCE_POOLS, policy.instance_pool):
        raise ValidationError(
            f"validation failed, instance pool {policy.instance_pool} is not known, "
            f"must used one of allowed pools {_listing(ALLOWED_INSTANCE_POOLS)}"
        )
    if policy.spot_ratio is None:
        policy.spot_ratio = 0


def _filter_last(values: list[str], allowed: Iterable[str]) -> list[str]:
    result = values
    pool = set(allowed)
    for value in values:
        if value.casefold() == "all":
            continue
        result = [value] if value in pool else []
    return result


def _validate_hooks(configuration: EKSConfiguration) -> None:
    hooks = []
    for original in configuration.lifecycle_hooks:
        hook = dataclasses.replace(original)
        if hook.heartbeat_timeout == 0:
            hook.heartbeat_timeout = LIFECYCLE_HOOK_DEFAULT_HEARTBEAT_TIMEOUT
        if contains_equal_fold(LIFECYCLE_HOOK_ALLOWED_DEFAULT_RESULT, hook.default_result):
            hook.default_result = hook.default_result.upper()
        else:
            hook.default_result = LIFECYCLE_HOOK_RESULT_ABANDON
        if not contains_equal_fold(LIFECYCLE_HOOK_ALLOWED_TRANSITIONS, hook.lifecycle):
            raise ValidationError(
                "validation failed, 'lifecycle' is a required parameter and must be in "
                f"{_listing(LIFECYCLE_HOOK_ALLOWED_TRANSITIONS)}"
            )
        if hook.lifecycle.casefold() == LIFECYCLE_HOOK_TRANSITION_LAUNCH.casefold():
            hook.lifecycle = AUTOSCALING_LIFECYCLE_LAUNCH
        elif hook.lifecycle.casefold() == LIFECYCLE_HOOK_TRANSITION_TERMINATE.casefold():
            hook.lifecycle = AUTOSCALING_LIFECYCLE_TERMINATE
        if not hook.name:
            raise ValidationError("validation failed, 'name' is a required parameter")
        if hook.notification_arn and not is_arn(hook.notification_arn):
            raise ValidationError(
                "validation failed, 'notificationArn' must be a valid IAM role ARN"
            )
        # the role ARN is accepted only alongside a valid notification ARN
        if hook.role_arn and not is_arn(hook.notification_arn):
            raise ValidationError(
                "validation failed, 'roleArn' must be a valid IAM role ARN"
            )
        hooks.append(hook)
    configuration.lifecycle_hooks = hooks


def validate_eks_configuration(configuration: EKSConfiguration) -> None:
    """Check an eks node configuration, filling in its defaults."""
    if not configuration.cluster_name:
        raise ValidationError("validation failed, 'clusterName' is a required parameter")
    if not configuration.subnets:
        raise ValidationError("validation failed, 'subnets' is a required parameter")
    if not configuration.security_groups:
        raise ValidationError(
            "validation failed, 'securityGroups' is a required parameter"
        )

    configuration.metrics_collection = _filter_last(
        configuration.metrics_collection, DEFAULT_AUTOSCALING_METRICS
    )
    configuration.suspend_processes = _filter_last(
        configuration.suspend_processes, DEFAULT_SUSPEND_PROCESSES
    )

    options = configuration.bootstrap_options
    if options is not None and options.container_runtime:
        allowed = {runtime.value for runtime in ALLOWED_CONTAINER_RUNTIMES}
        if _value(options.container_runtime) not in allowed:
            raise ValidationError(
                "validation failed, 'bootstrapOptions.containerRuntime' must be one of "
                f"{_listing(ALLOWED_CONTAINER_RUNTIMES)}"
            )

    _validate_hooks(configuration)

    if not configuration.image:
        raise ValidationError("validation failed, 'image' is a required parameter")
    if not configuration.instance_type:
        raise ValidationError(
            "validation failed, 'instanceType' is a required parameter"
        )
    if not configuration.key_pair_name:
        raise ValidationError("validation failed, 'keyPair' is a required parameter")

    for volume in configuration.volumes:
        if volume.iops and not contains_equal_fold(
            VOLUME_TYPES_WITH_PROVISIONED_IOPS, volume.type
        ):
            raise ValidationError(
                f"cannot apply IOPS configuration for volumeType '{volume.type}', "
                f"only types '{_listing(VOLUME_TYPES_WITH_PROVISIONED_IOPS)}' supported"
            )
        if volume.snapshot_id and volume.size > 0:
            raise ValidationError(
                "validation failed, 'volume.snapshotId' and 'volume.size' are "
                "mutually exclusive"
            )
        if volume.iops and volume.iops < 100:
            raise ValidationError("validation failed, volume IOPS must be min 100")

    if not configuration.volumes:
        configuration.volumes = [
            NodeVolume(
                name=DEFAULT_VOLUME_NAME, type=DEFAULT_VOLUME_TYPE, size=DEFAULT_VOLUME_SIZE
            )
        ]

    if configuration.mixed_instances_policy is not None:
        validate_mixed_instances_policy(configuration.mixed_instances_policy)

    for position, license_arn in enumerate(configuration.license_specifications):
        if not is_arn(license_arn):
            raise ValidationError(
                f"validation failed, 'LicenseSpecifications[{position}]' must be a "
                "valid IAM role ARN"
            )

    validate_placement(configuration.placement)


def _override_type(overrides: ValidationOverrides | None) -> str | None:
    if overrides is None or overrides.scaling_configuration_override is None:
        return None
    return _value(overrides.scaling_configuration_override)


def validate_eks_spec(spec: EKSSpec, overrides: ValidationOverrides | None = None) -> None:
    """Check an eks spec, settling its scaling configuration type."""
    configuration = spec.configuration
    original_type = _value(spec.type)
    if configuration is None:
        raise ValidationError(
            "validation failed, 'configuration' is a required field"
        )

    if original_type not in (_LC, _LT):
        spec.type = _LT
        override = _override_type(overrides)
        if override is not None:
            if override not in (_LC, _LT):
                raise ValidationError(
                    "validation failed, 'scaling-configuration-override' has invalid "
                    f"value: {override} "
                )
            spec.type = override

    current_type = _value(spec.type)
    if current_type == _LC:
        # mixed instances policies need a launch template
        configuration.mixed_instances_policy = None
        if configuration.license_specifications:
            raise ValidationError(
                "validation failed, field 'licenseSpecifications' is only valid for "
                "LaunchTemplates"
            )
        placement = configuration.placement
        if placement is not None:
            if placement.host_resource_group_arn:
                raise ValidationError(
                    "validation failed, field 'hostResourceGroupArn' is only valid for "
                    "LaunchTemplates"
                )
            if placement.availability_zone:
                raise ValidationError(
                    "validation failed, field 'availabilityZone' is only valid for "
                    "LaunchTemplates"
                )

    for volume in configuration.volumes:
        if original_type == _LC and not contains_equal_fold(
            CONFIGURATION_ALLOWED_VOLUME_TYPES, volume.type
        ):
            raise ValidationError(
                f"validation failed, volume type '{volume.type}' is unsupported"
            )
        if original_type == _LT and not contains_equal_fold(
            TEMPLATE_ALLOWED_VOLUME_TYPES, volume.type
        ):
            raise ValidationError(
                f"validation failed, volume type '{volume.type}' is unsupported"
            )
        if volume.iops and not contains_equal_fold(
            VOLUME_TYPES_WITH_PROVISIONED_IOPS, volume.type
        ):
            raise ValidationError(
                f"validation failed, volume type '{volume.type}' does not support "
                "provisioned iops"
            )
        if volume.throughput and not contains_equal_fold(
            VOLUME_TYPES_WITH_PROVISIONED_THROUGHPUT, volume.type
        ):
            raise ValidationError(
                f"validation failed, volume type '{volume.type}' does not support "
                "provisioned throughput"
            )

    if spec.warm_pool is not None:
        if configuration.mixed_instances_policy is not None:
            raise ValidationError(
                "validation failed, cannot use warmPool with MixedInstancesPolicy"
            )
        if configuration.spot_price:
            raise ValidationError(
                "validation failed, cannot use warmPool with SpotPrice"
            )


def validate_instance_group(
    instance_group: InstanceGroup, overrides: ValidationOverrides | None = None
) -> None:
    """Check an instance group, filling in defaults on its provisioner spec."""
    spec = instance_group.spec
    provisioner = spec.provisioner

    if not contains_equal_fold(PROVISIONERS, provisioner):
        raise ValidationError(
            f"validation failed, provisioner '{provisioner}' is invalid"
        )

    provided = {
        EKS_PROVISIONER_NAME: spec.eks,
        EKS_MANAGED_PROVISIONER_NAME: spec.eks_managed,
        EKS_FARGATE_PROVISIONER_NAME: spec.eks_fargate,
    }
    if provisioner in provided and provided[provisioner] is None:
        raise ValidationError(
            f"validation failed, provisioner '{provisioner}' not provided in spec"
        )

    strategy = spec.strategy
    folded = provisioner.casefold()

    if folded == EKS_FARGATE_PROVISIONER_NAME:
        if strategy.type.casefold() != MANAGED_STRATEGY_NAME:
            raise ValidationError(
                f"validation failed, strategy '{strategy.type}' is invalid for the "
                "eks-fargate provisioner"
            )

    if folded == EKS_PROVISIONER_NAME:
        if spec.eks is None:
            raise ValidationError(
                f"validation failed, provisioner '{provisioner}' not provided in spec"
            )
        validate_eks_spec(spec.eks, overrides)
        validate_eks_configuration(spec.eks.configuration)

    strategy_type = strategy.type or ROLLING_UPDATE_STRATEGY_NAME
    if not contains_equal_fold(STRATEGIES, strategy_type):
        raise ValidationError(
            f"validation failed, strategy '{strategy_type}' is invalid"
        )

    if strategy_type.casefold() == CRD_STRATEGY_NAME:
        if strategy.crd is None:
            raise ValidationError("validation failed, strategy.crd is required")
        validate_crd_strategy(strategy.crd)