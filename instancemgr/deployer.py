"""The provisioner contract and the reconcile flow that drives it."""

from __future__ import annotations

from abc import ABC, abstractmethod

from instancemgr.api import ReconcileState


class CloudDeployer(ABC):
    """Operations every provisioner offers to the reconcile loop.

    Operations that can fail raise an exception; the reconcile flow lets it
    propagate to the caller.
    """

    @abstractmethod
    def cloud_discovery(self) -> None:
        """Discover the cloud resources behind the instance group."""

    @abstractmethod
    def state_discovery(self) -> None:
        """Derive the reconcile state from what was discovered."""

    @abstractmethod
    def create(self) -> None:
        """Create the instance group's cloud resources."""

    @abstractmethod
    def update(self) -> None:
        """Update the instance group's cloud resources."""

    @abstractmethod
    def delete(self) -> None:
        """Delete the instance group's cloud resources."""

    @abstractmethod
    def upgrade_nodes(self) -> None:
        """Run the configured upgrade strategy."""

    @abstractmethod
    def bootstrap_nodes(self) -> None:
        """Bootstrap the provisioned nodes into the cluster."""

    @abstractmethod
    def get_state(self) -> ReconcileState | str:
        """Return the current reconcile state."""

    @abstractmethod
    def set_state(self, state: ReconcileState | str) -> None:
        """Move the instance group to *state*."""

    @abstractmethod
    def is_ready(self) -> bool:
        """Return True if the instance group is ready for bootstrapping."""

    @abstractmethod
    def locked(self) -> bool:
        """Return True if upgrades of the instance group are locked."""


def _upgrade_unless_locked(deployer: CloudDeployer) -> bool:
    """Run the upgrade, or mark the group locked. Return True if locked."""
    if deployer.locked():
        deployer.set_state(ReconcileState.LOCKED)
        return True
    deployer.upgrade_nodes()
    return False


def handle_reconcile_request(deployer: CloudDeployer) -> None:
    """Drive *deployer* through one reconcile pass."""
    deployer.cloud_discovery()
    deployer.state_discovery()

    if deployer.get_state() == ReconcileState.INIT_DELETE:
        deployer.delete()

    if deployer.get_state() == ReconcileState.INIT_CREATE:
        deployer.create()

    if deployer.get_state() == ReconcileState.INIT_UPDATE:
        deployer.update()

    if deployer.get_state() == ReconcileState.INIT_UPGRADE:
        if _upgrade_unless_locked(deployer):
            return

    if deployer.get_state() == ReconcileState.ERROR:
        return

    if not deployer.is_ready():
        return

    deployer.bootstrap_nodes()

    if deployer.get_state() == ReconcileState.INIT_UPGRADE:
        if _upgrade_unless_locked(deployer):
            return

    if deployer.get_state() == ReconcileState.MODIFIED:
        deployer.set_state(ReconcileState.READY)