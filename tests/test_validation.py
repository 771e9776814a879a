import re

import pytest

from instancemgr.api import (
    AwsUpgradeStrategy,
    BootstrapOptions,
    CRDUpdateStrategy,
    EKSConfiguration,
    EKSFargateSpec,
    EKSSpec,
    InstanceGroup,
    InstanceGroupSpec,
    InstanceTypeSpec,
    LifecycleHookSpec,
    MetadataOptions,
    MixedInstancesPolicySpec,
    NodeVolume,
    PlacementSpec,
    ScalingConfigurationType,
    WarmPoolSpec,
)
from instancemgr.validation import (
    ValidationError,
    ValidationOverrides,
    is_arn,
    validate_crd_strategy,
    validate_eks_configuration,
    validate_eks_spec,
    validate_instance_group,
    validate_mixed_instances_policy,
    validate_placement,
)

HOST_GROUP_ARN = "arn:aws:resource-groups:us-west-2:1122334455:group/resourceName"


def basic_fargate_spec():
    return EKSFargateSpec(
        cluster_name="",
        pod_execution_role_arn="",
        subnets=["subnet-1111111", "subnet-222222"],
        tags=[{"key": "a-key", "value": "a-value"}],
    )


def mock_instance_group(provisioner, strategy, eks=None, eks_managed=None, eks_fargate=None):
    return InstanceGroup(
        spec=InstanceGroupSpec(
            provisioner=provisioner,
            strategy=AwsUpgradeStrategy(type=strategy),
            eks=eks,
            eks_managed=eks_managed,
            eks_fargate=eks_fargate,
        )
    )


def mock_eks_spec():
    return EKSSpec(
        type="invalid-scaling-config",
        configuration=EKSConfiguration(
            cluster_name="sample-cluster",
            subnets=["subnet-1111111", "subnet-222222"],
            security_groups=["sg-sample-1", "sg-sample-2"],
            image="sample-ami",
            instance_type="sample-instance",
            key_pair_name="sample-key-pair",
        ),
    )


def eks_config(**overrides):
    values = dict(
        cluster_name="my-eks-cluster",
        security_groups=["sg-123456789"],
        image="ami-12345",
        instance_type="m5.large",
        key_pair_name="thisShouldBeOptional",
        subnets=["subnet-1111111", "subnet-222222"],
    )
    values.update(overrides)
    return EKSConfiguration(**values)


def eks_group(**config_overrides):
    return mock_instance_group(
        "eks",
        "rollingUpdate",
        eks=EKSSpec(
            max_size=1,
            min_size=1,
            type="LaunchTemplate",
            configuration=eks_config(**config_overrides),
        ),
    )


def host_placement():
    return PlacementSpec(
        availability_zone="us-west-2a",
        host_resource_group_arn=HOST_GROUP_ARN,
        tenancy="host",
    )


def outcome(instance_group, overrides=None):
    try:
        validate_instance_group(instance_group, overrides)
    except ValidationError as exc:
        return str(exc)
    return ""


VALID_CASES = [
    (
        "eks-fargate with managed strategy",
        lambda: mock_instance_group("eks-fargate", "managed", eks_fargate=basic_fargate_spec()),
        None,
    ),
    (
        "eks with valid Placement",
        lambda: eks_group(placement=host_placement()),
        None,
    ),
    (
        "eks with gp3 volume validates",
        lambda: eks_group(
            placement=host_placement(),
            volumes=[NodeVolume(type="gp3", iops=230, throughput=1000)],
        ),
        None,
    ),
    (
        "eks with metadataoptions validates",
        lambda: eks_group(
            placement=host_placement(),
            metadata_options=MetadataOptions(
                http_endpoint="enabled", http_tokens="required", http_put_hop_limit=1
            ),
        ),
        None,
    ),
    (
        "eks with valid configuration for any random partition",
        lambda: eks_group(
            license_specifications=[
                "arn:some-partition:some-service:somewhere-west-1:some-account-number:"
                "license-configuration:lic-0a88baf9a84f39df630da6e67000f88f"
            ],
            placement=PlacementSpec(
                availability_zone="us-gov-west-1a",
                host_resource_group_arn=(
                    "arn:some-partition:some-group:somewhere-west-1:"
                    "some-account-number:group/resourceName"
                ),
                tenancy="host",
            ),
        ),
        None,
    ),
    (
        "default to launch config instead of launch template",
        lambda: mock_instance_group("eks-fargate", "managed", eks_fargate=basic_fargate_spec()),
        ValidationOverrides(
            scaling_configuration_override=ScalingConfigurationType.LAUNCH_CONFIGURATION
        ),
    ),
]


INVALID_CASES = [
    (
        "eks-bogus provisioner",
        lambda: mock_instance_group("eks-bogus", "managed"),
        None,
        "validation failed, provisioner 'eks-bogus' is invalid",
    ),
    (
        "eks-fargate with bad strategy",
        lambda: mock_instance_group(
            "eks-fargate", "rollingUpdate", eks_fargate=basic_fargate_spec()
        ),
        None,
        "validation failed, strategy 'rollingUpdate' is invalid for the eks-fargate provisioner",
    ),
    (
        "eks with empty strings in licenseSpecifications",
        lambda: eks_group(license_specifications=[""]),
        None,
        "validation failed, 'LicenseSpecifications[0]' must be a valid IAM role ARN",
    ),
    (
        "eks with invalid licenseSpecification",
        lambda: eks_group(license_specifications=["thisShouldBeAnARN"]),
        None,
        "validation failed, 'LicenseSpecifications[0]' must be a valid IAM role ARN",
    ),
    (
        "eks with invalid container runtime",
        lambda: eks_group(bootstrap_options=BootstrapOptions(container_runtime="foo")),
        None,
        "validation failed, 'bootstrapOptions.containerRuntime' must be one of [containerd dockerd]",
    ),
    (
        "eks with invalid combination of HostResourceGroupArn and Tenancy in Placement",
        lambda: eks_group(
            placement=PlacementSpec(host_resource_group_arn=HOST_GROUP_ARN, tenancy="default")
        ),
        None,
        'validation failed, Tenancy must be "host" when HostResourceGroupArn is set',
    ),
    (
        "eks with invalid HostResourceGroupArn in Placement",
        lambda: eks_group(
            placement=PlacementSpec(host_resource_group_arn="notAnARN", tenancy="host")
        ),
        None,
        "validation failed, HostResourceGroupArn must be a valid dedicated HostResourceGroup ARN",
    ),
    (
        "eks with invalid Tenancy in Placement",
        lambda: eks_group(placement=PlacementSpec(tenancy="invalid")),
        None,
        "validation failed, Tenancy must be one of default, dedicated, host",
    ),
    (
        "eks with gp2 volume with provisioned throughput fails",
        lambda: eks_group(
            placement=host_placement(),
            volumes=[NodeVolume(type="gp2", throughput=1000)],
        ),
        None,
        "validation failed, volume type 'gp2' does not support provisioned throughput",
    ),
    (
        "eks with gp2 volume with provisioned iops fails",
        lambda: eks_group(
            placement=host_placement(),
            volumes=[NodeVolume(type="gp2", iops=1000)],
        ),
        None,
        "validation failed, volume type 'gp2' does not support provisioned iops",
    ),
    (
        "eks with invalid LicenseSpecifications for any random partition",
        lambda: eks_group(
            license_specifications=[
                "arn:missingfield:license-manager012345678901:license-configuration:"
                "lic-0a88baf9a84f39df630da6e67000f88f"
            ]
        ),
        None,
        "validation failed, 'LicenseSpecifications[0]' must be a valid IAM role ARN",
    ),
    (
        "eks with invalid combination of HostResourceGroupArn and Tenancy for any random partition",
        lambda: eks_group(
            placement=PlacementSpec(
                host_resource_group_arn=(
                    "arn:some-partition:resource-groups:us-west-2:1122334455:group/resourceName"
                ),
                tenancy="default",
            )
        ),
        None,
        'validation failed, Tenancy must be "host" when HostResourceGroupArn is set',
    ),
    (
        "eks with invalid HostResourceGroupArn in Placement for any random partition",
        lambda: eks_group(
            placement=PlacementSpec(
                host_resource_group_arn="arn:missing-field:resource-groups1122334455:group/resourceName",
                tenancy="host",
            )
        ),
        None,
        "validation failed, HostResourceGroupArn must be a valid dedicated HostResourceGroup ARN",
    ),
]


@pytest.mark.parametrize(
    "make_group, overrides",
    [case[1:] for case in VALID_CASES],
    ids=[case[0] for case in VALID_CASES],
)
def test_instance_group_spec_validate(make_group, overrides):
    group = make_group()
    provisioner = group.spec.provisioner
    strategy = group.spec.strategy.type
    validate_instance_group(group, overrides)
    assert group.spec.provisioner == provisioner
    assert group.spec.strategy.type == strategy
    if provisioner == "eks":
        assert group.spec.eks.type == "LaunchTemplate"
        assert len(group.spec.eks.configuration.volumes) >= 1


@pytest.mark.parametrize(
    "make_group, overrides, want",
    [case[1:] for case in INVALID_CASES],
    ids=[case[0] for case in INVALID_CASES],
)
def test_instance_group_spec_validate_errors(make_group, overrides, want):
    group = make_group()
    with pytest.raises(ValidationError) as exc_info:
        validate_instance_group(group, overrides)
    assert str(exc_info.value) == want


@pytest.mark.parametrize(
    "override, want, expect_error",
    [
        (ScalingConfigurationType.LAUNCH_CONFIGURATION, "LaunchConfiguration", False),
        (None, "LaunchTemplate", False),
        (ScalingConfigurationType.LAUNCH_TEMPLATE, "LaunchTemplate", False),
        ("invalid-scaling-config-type", "LaunchTemplate", True),
    ],
)
def test_scaling_config_override(override, want, expect_error):
    group = mock_instance_group(
        "eks", "managed", eks=mock_eks_spec(), eks_fargate=basic_fargate_spec()
    )
    result = outcome(group, ValidationOverrides(scaling_configuration_override=override))
    assert (result != "") is expect_error
    assert group.spec.eks.type == want


def test_invalid_override_message():
    group = mock_instance_group("eks", "managed", eks=mock_eks_spec())
    overrides = ValidationOverrides(scaling_configuration_override="bogus")
    with pytest.raises(ValidationError, match="'scaling-configuration-override' has invalid value: bogus"):
        validate_instance_group(group, overrides)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("arn:aws:iam::123456789012:role/node", True),
        (HOST_GROUP_ARN, True),
        ("", False),
        ("notAnARN", False),
        ("arn:a:b:c:d", False),
        ("aws:a:b:c:d:e", False),
    ],
)
def test_is_arn(value, expected):
    assert is_arn(value) is expected


def test_missing_eks_spec():
    group = mock_instance_group("eks", "rollingupdate")
    assert outcome(group) == "validation failed, provisioner 'eks' not provided in spec"


def test_missing_configuration():
    spec = EKSSpec(type="LaunchTemplate")
    with pytest.raises(ValidationError, match="'configuration' is a required field"):
        validate_eks_spec(spec, ValidationOverrides())


def test_invalid_strategy():
    group = mock_instance_group("eks-fargate", "managed", eks_fargate=basic_fargate_spec())
    group.spec.provisioner = "eks-managed"
    group.spec.eks_managed = None
    assert outcome(group) == "validation failed, provisioner 'eks-managed' not provided in spec"


def test_crd_strategy_required():
    group = eks_group()
    group.spec.strategy.type = "crd"
    assert outcome(group) == "validation failed, strategy.crd is required"


def test_unknown_strategy():
    group = eks_group()
    group.spec.strategy.type = "bluegreen"
    assert outcome(group) == "validation failed, strategy 'bluegreen' is invalid"


def test_empty_strategy_accepted_without_mutation():
    group = eks_group()
    group.spec.strategy.type = ""
    assert outcome(group) == ""
    assert group.spec.strategy.type == ""


def test_default_volume_added():
    group = eks_group()
    assert outcome(group) == ""
    volumes = group.spec.eks.configuration.volumes
    assert [(v.name, v.type, v.size) for v in volumes] == [("/dev/xvda", "gp2", 32)]


def complete_crd(**overrides):
    values = dict(
        spec="kind: Job",
        crd_name="jobs",
        status_json_path=".status",
        status_success_string="done",
        status_failure_string="failed",
    )
    values.update(overrides)
    return CRDUpdateStrategy(**values)


def test_crd_strategy_defaults():
    strategy = complete_crd(concurrency_policy="bogus")
    validate_crd_strategy(strategy)
    assert strategy.concurrency_policy == "forbid"
    assert strategy.max_retries == 3


def test_crd_strategy_keeps_values():
    strategy = complete_crd(concurrency_policy="Allow", max_retries=7)
    validate_crd_strategy(strategy)
    assert (strategy.concurrency_policy, strategy.max_retries) == ("Allow", 7)


@pytest.mark.parametrize(
    "field_name, message",
    [
        ("spec", "spec is empty"),
        ("crd_name", "crdName is empty"),
        ("status_json_path", "statusJSONPath is empty"),
        ("status_success_string", "statusSuccessString is empty"),
        ("status_failure_string", "statusFailureString is empty"),
    ],
)
def test_crd_strategy_errors(field_name, message):
    with pytest.raises(ValidationError, match=f"^{message}$"):
        validate_crd_strategy(complete_crd(**{field_name: ""}))


def test_crd_strategy_through_group():
    group = eks_group()
    group.spec.strategy = AwsUpgradeStrategy(type="CRD", crd=complete_crd(crd_name=""))
    assert outcome(group) == "crdName is empty"


def test_placement_none():
    assert validate_placement(None) is None


def test_placement_empty_tenancy_rejected():
    with pytest.raises(ValidationError, match="Tenancy must be one of"):
        validate_placement(PlacementSpec())


def test_mixed_policy_defaults():
    policy = MixedInstancesPolicySpec(
        instance_types=[InstanceTypeSpec(type="m5.large"), InstanceTypeSpec(type="c5.large", weight=3)]
    )
    validate_mixed_instances_policy(policy)
    assert policy.strategy == "CapacityOptimized"
    assert [t.weight for t in policy.instance_types] == [1, 3]
    assert policy.spot_ratio == 0


def test_mixed_policy_spot_pools_defaults_lowest_price():
    policy = MixedInstancesPolicySpec(spot_pools=5, instance_pool="SubFamilyFlexible")
    validate_mixed_instances_policy(policy)
    assert (policy.strategy, policy.spot_pools) == ("LowestPrice", 5)


def test_mixed_policy_spot_pools_out_of_range_unset():
    policy = MixedInstancesPolicySpec(spot_pools=30, instance_pool="SubFamilyFlexible")
    validate_mixed_instances_policy(policy)
    assert policy.spot_pools is None


def test_mixed_policy_spot_pools_need_lowest_price():
    policy = MixedInstancesPolicySpec(
        strategy="CapacityOptimized", spot_pools=2, instance_pool="SubFamilyFlexible"
    )
    with pytest.raises(ValidationError, match="can only use spotPools with LowestPrice strategy"):
        validate_mixed_instances_policy(policy)


def test_mixed_policy_bad_strategy():
    policy = MixedInstancesPolicySpec(strategy="Cheapest", instance_pool="SubFamilyFlexible")
    with pytest.raises(ValidationError, match="got 'Cheapest'"):
        validate_mixed_instances_policy(policy)


def test_mixed_policy_requires_pool_or_types():
    with pytest.raises(ValidationError, match="must provide either instancePool or instanceTypes"):
        validate_mixed_instances_policy(MixedInstancesPolicySpec())


def test_mixed_policy_unknown_pool():
    policy = MixedInstancesPolicySpec(instance_pool="Whatever")
    with pytest.raises(
        ValidationError,
        match=re.escape("instance pool Whatever is not known, must used one of allowed pools [SubFamilyFlexible]"),
    ):
        validate_mixed_instances_policy(policy)


def test_lifecycle_hook_defaults():
    config = eks_config(
        lifecycle_hooks=[
            LifecycleHookSpec(name="drain", lifecycle="terminate"),
            LifecycleHookSpec(name="warm", lifecycle="LAUNCH", default_result="continue", heartbeat_timeout=60),
        ]
    )
    original = config.lifecycle_hooks[0]
    validate_eks_configuration(config)
    first, second = config.lifecycle_hooks
    assert (first.lifecycle, first.default_result, first.heartbeat_timeout) == (
        "autoscaling:EC2_INSTANCE_TERMINATING",
        "ABANDON",
        300,
    )
    assert (second.lifecycle, second.default_result, second.heartbeat_timeout) == (
        "autoscaling:EC2_INSTANCE_LAUNCHING",
        "CONTINUE",
        60,
    )
    assert original.lifecycle == "terminate"


def test_lifecycle_hook_bad_transition():
    config = eks_config(lifecycle_hooks=[LifecycleHookSpec(name="x", lifecycle="reboot")])
    with pytest.raises(ValidationError, match=re.escape("must be in [Launch Terminate]")):
        validate_eks_configuration(config)


def test_lifecycle_hook_requires_name():
    config = eks_config(lifecycle_hooks=[LifecycleHookSpec(lifecycle="Launch")])
    with pytest.raises(ValidationError, match="'name' is a required parameter"):
        validate_eks_configuration(config)


def test_lifecycle_hook_role_arn_needs_notification_arn():
    config = eks_config(
        lifecycle_hooks=[
            LifecycleHookSpec(name="x", lifecycle="Launch", role_arn="arn:aws:iam::1:role/r:x")
        ]
    )
    with pytest.raises(ValidationError, match="'roleArn' must be a valid IAM role ARN"):
        validate_eks_configuration(config)


@pytest.mark.parametrize(
    "given, expected",
    [
        (["GroupMinSize"], ["GroupMinSize"]),
        (["all"], ["all"]),
        (["bogus"], []),
        (["GroupMinSize", "all"], ["GroupMinSize"]),
    ],
)
def test_metrics_collection_filtering(given, expected):
    config = eks_config(metrics_collection=list(given))
    validate_eks_configuration(config)
    assert config.metrics_collection == expected


def test_suspend_processes_filtering():
    config = eks_config(suspend_processes=["bogus", "AZRebalance"])
    validate_eks_configuration(config)
    assert config.suspend_processes == ["AZRebalance"]


@pytest.mark.parametrize(
    "field_name, message",
    [
        ("cluster_name", "'clusterName' is a required parameter"),
        ("subnets", "'subnets' is a required parameter"),
        ("security_groups", "'securityGroups' is a required parameter"),
        ("image", "'image' is a required parameter"),
        ("instance_type", "'instanceType' is a required parameter"),
        ("key_pair_name", "'keyPair' is a required parameter"),
    ],
)
def test_configuration_required_fields(field_name, message):
    empty = [] if field_name in ("subnets", "security_groups") else ""
    with pytest.raises(ValidationError, match=message):
        validate_eks_configuration(eks_config(**{field_name: empty}))


def test_volume_iops_minimum():
    config = eks_config(volumes=[NodeVolume(type="io1", iops=50)])
    with pytest.raises(ValidationError, match="volume IOPS must be min 100"):
        validate_eks_configuration(config)


def test_volume_snapshot_and_size_exclusive():
    config = eks_config(volumes=[NodeVolume(type="gp2", size=10, snapshot_id="snap-1")])
    with pytest.raises(ValidationError, match="mutually exclusive"):
        validate_eks_configuration(config)


def test_volume_iops_type_message():
    config = eks_config(volumes=[NodeVolume(type="gp2", iops=200)])
    with pytest.raises(
        ValidationError,
        match=re.escape("only types '[io1 io2 gp3]' supported"),
    ):
        validate_eks_configuration(config)


def test_launch_configuration_drops_mixed_policy():
    spec = EKSSpec(
        type="LaunchConfiguration",
        configuration=eks_config(mixed_instances_policy=MixedInstancesPolicySpec(instance_pool="SubFamilyFlexible")),
    )
    validate_eks_spec(spec, ValidationOverrides())
    assert spec.configuration.mixed_instances_policy is None


def test_launch_configuration_rejects_gp3():
    spec = EKSSpec(type="LaunchConfiguration", configuration=eks_config(volumes=[NodeVolume(type="gp3")]))
    with pytest.raises(ValidationError, match="volume type 'gp3' is unsupported"):
        validate_eks_spec(spec, ValidationOverrides())


def test_launch_configuration_rejects_license_specifications():
    spec = EKSSpec(
        type="LaunchConfiguration",
        configuration=eks_config(license_specifications=["arn:a:b:c:d:e"]),
    )
    with pytest.raises(ValidationError, match="'licenseSpecifications' is only valid for LaunchTemplates"):
        validate_eks_spec(spec, ValidationOverrides())


def test_launch_configuration_rejects_availability_zone():
    spec = EKSSpec(
        type="LaunchConfiguration",
        configuration=eks_config(placement=PlacementSpec(availability_zone="us-west-2a", tenancy="default")),
    )
    with pytest.raises(ValidationError, match="'availabilityZone' is only valid for LaunchTemplates"):
        validate_eks_spec(spec, ValidationOverrides())


def test_warm_pool_rejects_spot_price():
    spec = EKSSpec(
        type="LaunchTemplate",
        warm_pool=WarmPoolSpec(max_size=2),
        configuration=eks_config(spot_price="0.5"),
    )
    with pytest.raises(ValidationError, match="cannot use warmPool with SpotPrice"):
        validate_eks_spec(spec, ValidationOverrides())


def test_warm_pool_rejects_mixed_policy():
    spec = EKSSpec(
        type="LaunchTemplate",
        warm_pool=WarmPoolSpec(max_size=2),
        configuration=eks_config(mixed_instances_policy=MixedInstancesPolicySpec(instance_pool="SubFamilyFlexible")),
    )
    with pytest.raises(ValidationError, match="cannot use warmPool with MixedInstancesPolicy"):
        validate_eks_spec(spec, ValidationOverrides())