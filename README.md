# instancemgr

A library for describing, validating and reconciling *instance groups*:
declarative descriptions of cluster worker-node groups (self-managed `eks`
node groups, `eks-managed` node groups and `eks-fargate` profiles).

## Modules

- `instancemgr.api`: the resource model. `InstanceGroup` holds an
  `ObjectMeta`, an `InstanceGroupSpec` (with `eks`, `eks_managed`,
  `eks_fargate` and `strategy` fields) and an `InstanceGroupStatus`.
  `InstanceGroup.from_dict` and `InstanceGroup.to_dict` convert between
  typed objects and plain dictionaries using the manifest field names
  (`clusterName`, `securityGroups`, `maxUnavailable`, ...). The module also
  has the `ReconcileState`, `ScalingConfigurationType` and `ContainerRuntime`
  enums and `GROUP_VERSION` (`instancemgr.keikoproj.io/v1alpha1`).
- `instancemgr.validation`: `validate_instance_group(instance_group,
  overrides)` checks a group and raises `ValidationError` (a `ValueError`)
  when it is invalid. The checks for single parts are available on their own:
  `validate_eks_spec`, `validate_eks_configuration`, `validate_placement`,
  `validate_mixed_instances_policy`, `validate_crd_strategy` and `is_arn`.
  `ValidationOverrides` carries a default scaling configuration type.
- `instancemgr.deployer`: the abstract `CloudDeployer` that each provisioner
  implements, and `handle_reconcile_request(deployer)`, which drives one
  reconcile pass.
- `instancemgr.metrics`: `MetricsCollector`, in-process labelled counters
  and gauges for reconcile successes and failures, API throttles and the
  current state of each group; `collect()` yields `Sample` records.
- `instancemgr.bootstrap`: `MapperArguments` and the helpers
  `groups_for_os_family`, `node_bootstrap_upsert` and `node_bootstrap_remove`,
  which describe the role mapping a node needs to join a cluster.
- `instancemgr.utils`: helpers for case-insensitive matching, dotted field
  access in nested dictionaries, list merging, percentage parsing and the like.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
from instancemgr.api import InstanceGroup
from instancemgr.validation import ValidationError, ValidationOverrides, validate_instance_group

manifest = {
    "metadata": {"name": "workers", "namespace": "default"},
    "spec": {
        "provisioner": "eks",
        "strategy": {"type": "rollingUpdate"},
        "eks": {
            "minSize": 1,
            "maxSize": 3,
            "configuration": {
                "clusterName": "my-eks-cluster",
                "image": "ami-12345",
                "instanceType": "m5.large",
                "keyPairName": "my-key-pair",
                "subnets": ["subnet-1111111", "subnet-222222"],
                "securityGroups": ["sg-123456789"],
            },
        },
    },
}

group = InstanceGroup.from_dict(manifest)
try:
    validate_instance_group(group, ValidationOverrides())
except ValidationError as err:
    print(f"invalid instance group: {err}")
else:
    print(group.namespaced_name(), group.spec.eks.type)
```

Validation changes the group in place to fill in defaults. After the call
above the scaling configuration type is `LaunchTemplate` (or the type given
in `ValidationOverrides`) and a default root volume (`/dev/xvda`, `gp2`,
32) is present. Lifecycle hooks get a default heartbeat timeout and result,
a mixed instances policy gets a default strategy, weights and spot ratio,
and a CRD upgrade strategy gets a default concurrency policy and retry count.

## Reconciling

Provisioners subclass `CloudDeployer` and implement its operations.
`handle_reconcile_request` runs cloud and state discovery, then delete,
create, update and node upgrade according to the state the deployer
reports, and bootstraps nodes once the deployer is ready; a `ReconcileModified`
state then becomes `Ready`. Any exception an operation raises propagates
to the caller. If an upgrade is due while `deployer.locked()` is true, the
state is set to `Locked` instead of upgrading. `InstanceGroup.locked()`
reports whether the `instancemgr.keikoproj.io/lock-upgrades` annotation is
`"true"`.

## What this package does not do

It has no command and runs no controller loop: it does not watch or patch
resources in a cluster, talk to a cloud API or edit the cluster's aws-auth
mapping (`bootstrap` only builds the arguments). Metrics are kept in memory
and are not served over HTTP. No provisioner implementations are included;
`CloudDeployer` must be implemented by the user.