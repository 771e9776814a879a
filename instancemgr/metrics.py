"""Reconcile metrics kept as labelled counters and gauges."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

NAMESPACE = "instance_manager"

EXTERNAL_STATES = ("ReconcileModifying", "InitUpgrade", "Deleting", "Ready", "Error")


@dataclass
class Sample:
    """One labelled metric value."""

    name: str
    labels: dict[str, str]
    value: float


@dataclass
class _MetricVector:
    name: str
    help: str
    label_names: tuple[str, ...]
    values: dict[tuple[str, ...], float] = field(default_factory=dict)

    def _key(self, labels: dict[str, str]) -> tuple[str, ...]:
        if set(labels) != set(self.label_names):
            raise ValueError(
                f"{self.name} expects labels {list(self.label_names)}, got {sorted(labels)}"
            )
        return tuple(labels[name] for name in self.label_names)

    def inc(self, **labels: str) -> None:
        key = self._key(labels)
        self.values[key] = self.values.get(key, 0.0) + 1.0

    def set(self, value: float, **labels: str) -> None:
        self.values[self._key(labels)] = float(value)

    def reset(self) -> None:
        self.values.clear()

    def samples(self) -> Iterator[Sample]:
        for key, value in self.values.items():
            yield Sample(self.name, dict(zip(self.label_names, key)), value)


class MetricsCollector:
    """Counts reconcile outcomes, API throttles and instance group states."""

    def __init__(self) -> None:
        self._success = _MetricVector(
            f"{NAMESPACE}_reconcile_success_total",
            "total successful reconciles",
            ("instancegroup",),
        )
        self._failure = _MetricVector(
            f"{NAMESPACE}_reconcile_fail_total",
            "total failed reconciles",
            ("instancegroup", "reason"),
        )
        self._throttle = _MetricVector(
            f"{NAMESPACE}_aws_api_throttle_total",
            "number of aws API calls throttles",
            ("service", "operation"),
        )
        self._status = _MetricVector(
            f"{NAMESPACE}_instance_group_status",
            "number of instance groups and their status",
            ("instancegroup", "status"),
        )

    def _vectors(self) -> tuple[_MetricVector, ...]:
        return (self._success, self._failure, self._throttle, self._status)

    def set_instance_group(self, instance_group: str, state: str) -> None:
        """Mark *state* as the current external state of *instance_group*."""
        folded = state.casefold()
        if not any(s.casefold() == folded for s in EXTERNAL_STATES):
            return
        for known in EXTERNAL_STATES:
            self._status.set(0, instancegroup=instance_group, status=known)
        self._status.set(1, instancegroup=instance_group, status=state)

    def unset_instance_group(self) -> None:
        """Clear every recorded metric."""
        for vector in self._vectors():
            vector.reset()

    def inc_success(self, instance_group: str) -> None:
        self._success.inc(instancegroup=instance_group)

    def inc_fail(self, instance_group: str, reason: str) -> None:
        self._failure.inc(instancegroup=instance_group, reason=reason)

    def inc_throttle(self, service: str, operation: str) -> None:
        self._throttle.inc(service=service, operation=operation)

    def collect(self) -> Iterator[Sample]:
        """Yield every recorded sample."""
        for vector in self._vectors():
            yield from vector.samples()