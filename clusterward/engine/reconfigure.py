"""
Reconfiguration engine: membership changes as whole-version transitions.

Every operation walks the same state machine:

    IDLE -> PREPARING -> AWAITING_COORDINATION_ACK -> REGENERATING_CONFIGS
         -> COMMITTING -> IDLE

with FAILED reachable from any non-idle state. Data-store changes skip
AWAITING_COORDINATION_ACK. Nothing durable changes before COMMITTING, so a
failure up to that point is safe to retry as a whole. A failure while
committing is reported as PartialCommitError and must be resolved with
``reconcile``; it is never retried automatically.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple
from clusterward.core.allocator import PortAllocator
from clusterward.core.config import DeploymentConfig
from clusterward.core.errors import (
    ConfigWriteError,
    CoordinationServiceError,
    DeploymentExistsError,
    DeploymentNotFoundError,
    LifecycleError,
    PartialCommitError,
)
from clusterward.core.models import NodeAddress, NodeIdentity, NodeKind
from clusterward.core.topology import Topology
from clusterward.render.renderer import ConfigRenderer
from clusterward.storage.files import DeploymentLock, write_atomic
from clusterward.storage.store import TopologyStore
from .coordination import CoordinationClient, build_coordination_client
from .lifecycle import ProcessLifecycle


class EngineState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    AWAITING_COORDINATION_ACK = "awaiting_coordination_ack"
    REGENERATING_CONFIGS = "regenerating_configs"
    COMMITTING = "committing"
    FAILED = "failed"


@dataclass
class ReconfigurationResult:
    """Outcome of a committed reconfiguration"""
    change: str
    topology: Topology
    node: Optional[NodeIdentity] = None
    written: List[Path] = field(default_factory=list)
    lifecycle_error: Optional[str] = None


@dataclass
class ReconciliationReport:
    """Difference between the persisted topology and the live ensemble"""
    persisted_version: int
    ensemble: Dict[int, str]
    missing_from_ensemble: List[int]
    unknown_to_topology: List[int]
    address_mismatches: Dict[int, Tuple[str, str]] = field(default_factory=dict)
    applied: Optional[ReconfigurationResult] = None

    @property
    def in_sync(self) -> bool:
        return not (self.missing_from_ensemble or self.unknown_to_topology)


# (current topology) -> (candidate topology, node the change is about)
PrepareStep = Callable[[Topology], Tuple[Topology, Optional[NodeIdentity]]]
# (current topology, candidate topology, node) -> None once acknowledged
AcknowledgeStep = Callable[[Topology, Topology, Optional[NodeIdentity]], None]


class ReconfigurationEngine:
    """
    Single-writer orchestrator for membership changes of one deployment.

    Concurrent invocations against the same deployment directory are
    refused by a non-blocking lock before any external call is made.
    """

    def __init__(self,
                 config: DeploymentConfig,
                 coordination_client: Optional[CoordinationClient] = None,
                 lifecycle: Optional[ProcessLifecycle] = None,
                 store: Optional[TopologyStore] = None):
        self.config = config
        self.allocator = PortAllocator(config.deployment_dir, config.base_ports, config.host)
        self.renderer = ConfigRenderer(self.allocator, config.coordination_tracks_datastores)
        self.store = store or TopologyStore(config.deployment_dir)
        self.coordination_client = coordination_client or build_coordination_client(config)
        self.lifecycle = lifecycle
        self.state = EngineState.IDLE
        self.transitions: List[EngineState] = []
        self.logger = logging.getLogger(f"ReconfigurationEngine-{config.cluster_name}")

    def current_topology(self) -> Topology:
        """Last committed topology; takes no lock"""
        return self.store.load()

    # Operations

    def generate(self, num_coordination: int, num_datastore: int) -> ReconfigurationResult:
        """Create version 1, install every config and commit it"""
        # Invalid sizes are refused before anything is created on disk
        topology = Topology.create(num_coordination, num_datastore, self.config.cluster_name)

        with self._locked(create=True):
            if self.store.exists():
                raise DeploymentExistsError(
                    f"A deployment already exists at {self.config.deployment_dir}"
                )
            self._begin()
            try:
                self._enter(EngineState.REGENERATING_CONFIGS)
                written = self._install(self.renderer.render_all(topology))
            except Exception:
                self._enter(EngineState.FAILED)
                raise

            change = f"generate {num_coordination} coordination / {num_datastore} data-store nodes"
            self._commit(topology, change, acknowledged=False)
            self.logger.info(f"Generated {self.config.cluster_name} at {self.config.deployment_dir}")
            return ReconfigurationResult(change=change, topology=topology, written=written)

    def add_coordination_node(self, start: bool = True) -> ReconfigurationResult:
        """Add a node to the ensemble and start it once the change is committed"""
        def prepare(current: Topology):
            candidate, new_id = current.add_member(NodeKind.COORDINATION)
            return candidate, NodeIdentity(NodeKind.COORDINATION, new_id)

        def acknowledge(current: Topology, candidate: Topology, node: NodeIdentity):
            endpoint = self._control_endpoint(current)
            raft_address = self.allocator.ports_for(node.kind, node.id).raft_address
            self.logger.info(f"Asking ensemble at {endpoint.client_address} to add server {node.id} ({raft_address})")
            self.coordination_client.add_member(endpoint, node.id, raft_address)

        result = self._execute("add coordination node", prepare, acknowledge, list(NodeKind))
        if start:
            self._start(result)
        return result

    def remove_coordination_node(self, node_id: int, stop: bool = False) -> ReconfigurationResult:
        """
        Remove a node from the ensemble

        The quorum check runs before any external call. The removal request
        goes to a remaining member, never to the node being removed. The
        removed node's files are left in place; its process is stopped only
        when ``stop`` is set.
        """
        def prepare(current: Topology):
            candidate = current.remove_member(NodeKind.COORDINATION, node_id, self.config.quorum)
            return candidate, NodeIdentity(NodeKind.COORDINATION, node_id)

        def acknowledge(current: Topology, candidate: Topology, node: NodeIdentity):
            endpoint = self._control_endpoint(candidate)
            self.logger.info(f"Asking ensemble at {endpoint.client_address} to remove server {node.id}")
            self.coordination_client.remove_member(endpoint, node.id)

        result = self._execute(f"remove coordination node {node_id}", prepare, acknowledge, list(NodeKind))
        if stop:
            self._stop(result)
        return result

    def add_datastore_node(self, start: bool = True) -> ReconfigurationResult:
        def prepare(current: Topology):
            candidate, new_id = current.add_member(NodeKind.DATASTORE)
            return candidate, NodeIdentity(NodeKind.DATASTORE, new_id)

        result = self._execute("add data-store node", prepare, None, self._datastore_render_kinds())
        if start:
            self._start(result)
        return result

    def remove_datastore_node(self, node_id: int, stop: bool = False) -> ReconfigurationResult:
        def prepare(current: Topology):
            candidate = current.remove_member(NodeKind.DATASTORE, node_id)
            return candidate, NodeIdentity(NodeKind.DATASTORE, node_id)

        result = self._execute(
            f"remove data-store node {node_id}", prepare, None, self._datastore_render_kinds()
        )
        if stop:
            self._stop(result)
        return result

    def reconcile(self, apply: bool = False) -> ReconciliationReport:
        """
        Compare the persisted ensemble with the one the coordination service reports

        With ``apply`` the reported membership is adopted as a new topology
        version and every config is regenerated. The ensemble is never asked
        to change; this only brings local state in line with it.
        """
        with self._locked():
            current = self.store.load()
            ensemble = self._read_ensemble(current)

            persisted = current.coordination_members
            reported = frozenset(ensemble)
            mismatches = {}
            for member_id in sorted(persisted & reported):
                expected = self.allocator.ports_for(NodeKind.COORDINATION, member_id).raft_address
                if ensemble[member_id] != expected:
                    mismatches[member_id] = (expected, ensemble[member_id])

            report = ReconciliationReport(
                persisted_version=current.version,
                ensemble=ensemble,
                missing_from_ensemble=sorted(persisted - reported),
                unknown_to_topology=sorted(reported - persisted),
                address_mismatches=mismatches,
            )
            if report.in_sync:
                self.logger.info(f"Topology version {current.version} matches the ensemble")
                return report

            self.logger.warning(
                f"Ensemble differs from topology version {current.version}: "
                f"missing {report.missing_from_ensemble}, unknown {report.unknown_to_topology}"
            )
            if not apply:
                return report
            if not reported:
                raise CoordinationServiceError("Ensemble reported no members; refusing to adopt it")

            def prepare(topology: Topology):
                return topology.replace_coordination_members(reported), None

            report.applied = self._run_locked(
                "reconcile coordination membership", prepare, None, list(NodeKind), current
            )
            return report

    # State machine

    def _execute(self, change: str, prepare: PrepareStep,
                 acknowledge: Optional[AcknowledgeStep],
                 render_kinds: Sequence[NodeKind]) -> ReconfigurationResult:
        with self._locked():
            return self._run_locked(change, prepare, acknowledge, render_kinds)

    def _run_locked(self, change: str, prepare: PrepareStep,
                    acknowledge: Optional[AcknowledgeStep],
                    render_kinds: Sequence[NodeKind],
                    current: Optional[Topology] = None) -> ReconfigurationResult:
        self._begin()
        acknowledged = False
        try:
            if current is None:
                current = self.store.load()
            candidate, node = prepare(current)
            self.logger.info(f"Prepared '{change}': version {current.version} -> {candidate.version}")

            if acknowledge is not None:
                self._enter(EngineState.AWAITING_COORDINATION_ACK)
                acknowledge(current, candidate, node)
                acknowledged = True
                self.logger.info(f"Ensemble acknowledged '{change}'")

            self._enter(EngineState.REGENERATING_CONFIGS)
            configs = []
            for kind in render_kinds:
                configs.extend(self.renderer.render_kind(candidate, kind))
            written = self._install(configs)
        except Exception as e:
            self._enter(EngineState.FAILED)
            self.logger.error(f"'{change}' failed before commit; durable state is unchanged: {e}")
            raise

        self._commit(candidate, change, acknowledged)
        return ReconfigurationResult(change=change, topology=candidate, node=node, written=written)

    def _commit(self, candidate: Topology, change: str, acknowledged: bool):
        self._enter(EngineState.COMMITTING)
        try:
            self.store.save(candidate)
        except Exception as e:
            self._enter(EngineState.FAILED)
            applied = f"{change} (acknowledged by the ensemble)" if acknowledged else f"{change} (configs installed)"
            self.logger.critical(f"Failed to commit topology version {candidate.version} after {applied}: {e}")
            raise PartialCommitError(applied, e) from e
        self._enter(EngineState.IDLE)

    def _begin(self):
        self.transitions = []
        self._enter(EngineState.PREPARING)

    def _enter(self, state: EngineState):
        self.logger.debug(f"{self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)

    # Helpers

    @contextmanager
    def _locked(self, create: bool = False) -> Iterator[DeploymentLock]:
        if not create and not self.config.deployment_dir.exists():
            raise DeploymentNotFoundError(
                f"No deployment found at {self.config.deployment_dir}: is your path correct?"
            )
        with DeploymentLock(self.config.deployment_dir) as lock:
            yield lock

    def _install(self, configs) -> List[Path]:
        """Write configs whose content changed; returns the paths written"""
        written = []
        for rendered in configs:
            data = rendered.to_bytes()
            try:
                if rendered.path.exists() and rendered.path.read_bytes() == data:
                    continue
                write_atomic(rendered.path, data)
            except OSError as e:
                raise ConfigWriteError(rendered.path, e) from e
            self.logger.debug(f"Installed {rendered.path}")
            written.append(rendered.path)
        return written

    def _datastore_render_kinds(self) -> List[NodeKind]:
        if self.config.coordination_tracks_datastores:
            return [NodeKind.COORDINATION, NodeKind.DATASTORE]
        return [NodeKind.DATASTORE]

    def _control_endpoint(self, topology: Topology) -> NodeAddress:
        """Client address of the lowest-id member of the given ensemble"""
        return self.allocator.ports_for(NodeKind.COORDINATION, min(topology.coordination_members))

    def _read_ensemble(self, topology: Topology) -> Dict[int, str]:
        """Ask each persisted member in turn until one reports the membership"""
        last_error = None
        for member_id in sorted(topology.coordination_members):
            endpoint = self.allocator.ports_for(NodeKind.COORDINATION, member_id)
            try:
                return self.coordination_client.get_members(endpoint)
            except CoordinationServiceError as e:
                self.logger.warning(f"Coordination node {member_id} did not report membership: {e}")
                last_error = e
        raise last_error

    def _start(self, result: ReconfigurationResult):
        if self.lifecycle is None or result.node is None:
            return
        path = self.allocator.paths_for(result.node.kind, result.node.id).config_file
        try:
            self.lifecycle.start(result.node, path)
        except LifecycleError as e:
            self.logger.error(f"Committed '{result.change}' but could not start {result.node}: {e}")
            result.lifecycle_error = str(e)

    def _stop(self, result: ReconfigurationResult):
        if self.lifecycle is None or result.node is None:
            return
        try:
            self.lifecycle.stop(result.node)
        except LifecycleError as e:
            self.logger.error(f"Committed '{result.change}' but could not stop {result.node}: {e}")
            result.lifecycle_error = str(e)
