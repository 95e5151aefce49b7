"""
Versioned, immutable cluster membership
"""
import logging
from typing import FrozenSet, Iterable, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator
from .config import QuorumPolicy
from .errors import InvalidSizeError, QuorumViolationError, UnknownMemberError
from .models import NodeIdentity, NodeKind


logger = logging.getLogger("Topology")


class Topology(BaseModel):
    """
    Cluster membership at a single committed version.

    A Topology is never mutated. Every membership change returns a new
    instance with the version incremented by exactly one, so a reader
    holding a reference always sees a consistent view.

    Removed ids are kept as tombstones and are never handed out again.
    """
    model_config = ConfigDict(frozen=True)

    version: int = Field(ge=1)
    cluster_name: str = Field(min_length=1)
    coordination_members: FrozenSet[int]
    datastore_members: FrozenSet[int] = frozenset()
    coordination_tombstones: FrozenSet[int] = frozenset()
    datastore_tombstones: FrozenSet[int] = frozenset()

    @field_serializer(
        "coordination_members",
        "datastore_members",
        "coordination_tombstones",
        "datastore_tombstones",
    )
    def _serialize_ids(self, ids: FrozenSet[int]) -> List[int]:
        return sorted(ids)

    @model_validator(mode="after")
    def _check_invariants(self) -> "Topology":
        if not self.coordination_members:
            raise ValueError("a topology needs at least one coordination member")
        for kind in NodeKind:
            members = self.members(kind)
            if any(node_id < 0 for node_id in members | self.tombstones(kind)):
                raise ValueError(f"{kind.value} ids must be non-negative")
            reused = members & self.tombstones(kind)
            if reused:
                raise ValueError(f"{kind.value} ids {sorted(reused)} are both live and tombstoned")
        return self

    @classmethod
    def create(cls, num_coordination: int, num_datastore: int, cluster_name: str) -> "Topology":
        """Build the version 1 topology with ids 0..n-1 for each kind"""
        if num_coordination < 1:
            raise InvalidSizeError(
                f"At least one coordination node is required, got {num_coordination}"
            )
        if num_datastore < 0:
            raise InvalidSizeError(
                f"Number of data-store nodes cannot be negative, got {num_datastore}"
            )
        if not cluster_name:
            raise InvalidSizeError("Cluster name cannot be empty")

        return cls(
            version=1,
            cluster_name=cluster_name,
            coordination_members=frozenset(range(num_coordination)),
            datastore_members=frozenset(range(num_datastore)),
        )

    def members(self, kind: NodeKind) -> FrozenSet[int]:
        if kind == NodeKind.COORDINATION:
            return self.coordination_members
        return self.datastore_members

    def tombstones(self, kind: NodeKind) -> FrozenSet[int]:
        if kind == NodeKind.COORDINATION:
            return self.coordination_tombstones
        return self.datastore_tombstones

    def identities(self, kind: Optional[NodeKind] = None) -> List[NodeIdentity]:
        """Live nodes ascending by id, coordination nodes first"""
        kinds = [kind] if kind is not None else list(NodeKind)
        return [
            NodeIdentity(k, node_id)
            for k in kinds
            for node_id in sorted(self.members(k))
        ]

    def is_member(self, identity: NodeIdentity) -> bool:
        return identity.id in self.members(identity.kind)

    def snapshot(self) -> "Topology":
        """Immutable view for readers; the instance itself is never mutated"""
        return self

    def add_member(self, kind: NodeKind) -> Tuple["Topology", int]:
        """Allocate the smallest id never used by this kind and add it"""
        used = self.members(kind) | self.tombstones(kind)
        new_id = 0
        while new_id in used:
            new_id += 1

        topology = self._evolve(kind, members=self.members(kind) | {new_id})
        logger.debug(f"Allocated {kind.value} id {new_id} (version {topology.version})")
        return topology, new_id

    def remove_member(self, kind: NodeKind, node_id: int,
                      policy: Optional[QuorumPolicy] = None) -> "Topology":
        """
        Remove a live member and tombstone its id

        Args:
            kind: Kind of the node to remove
            node_id: Id of the node to remove
            policy: Quorum rule for coordination removals

        Returns:
            New topology at version + 1

        Raises:
            UnknownMemberError: node_id is not a current member
            QuorumViolationError: removal would break the ensemble quorum
        """
        members = self.members(kind)
        if node_id not in members:
            raise UnknownMemberError(kind, node_id)

        if kind == NodeKind.COORDINATION:
            self.check_removal_allowed(policy or QuorumPolicy())

        return self._evolve(
            kind,
            members=members - {node_id},
            tombstones=self.tombstones(kind) | {node_id},
        )

    def check_removal_allowed(self, policy: QuorumPolicy):
        """Raise QuorumViolationError unless one coordination node may be removed"""
        size = len(self.coordination_members)
        if not policy.allows_removal(size):
            raise QuorumViolationError(size, policy.threshold(size))

    def replace_coordination_members(self, node_ids: Iterable[int]) -> "Topology":
        """
        Adopt an externally observed ensemble membership

        Ids that leave the ensemble become tombstones. The ensemble is
        authoritative here, so an id it reports is live even if it was
        tombstoned locally.
        """
        new_members = frozenset(node_ids)
        dropped = self.coordination_members - new_members
        revived = new_members & self.coordination_tombstones
        if revived:
            logger.warning(f"Ensemble reports tombstoned coordination ids {sorted(revived)}")
        return self._evolve(
            NodeKind.COORDINATION,
            members=new_members,
            tombstones=(self.coordination_tombstones | dropped) - new_members,
        )

    def _evolve(self, kind: NodeKind, members: FrozenSet[int],
                tombstones: Optional[FrozenSet[int]] = None) -> "Topology":
        data = self.model_dump()
        data[f"{kind.value}_members"] = members
        if tombstones is not None:
            data[f"{kind.value}_tombstones"] = tombstones
        data["version"] = self.version + 1
        return Topology(**data)
