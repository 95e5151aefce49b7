"""
Topology snapshot -> per-node configuration
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Union
from clusterward.core.allocator import PortAllocator
from clusterward.core.errors import UnknownMemberError
from clusterward.core.models import NodeIdentity, NodeKind
from clusterward.core.topology import Topology
from .documents import (
    CoordinationDocument,
    DataStoreDocument,
    LogConfig,
    Macros,
    RaftServer,
    ServerAddress,
    config_document_adapter,
    to_xml,
)


@dataclass(frozen=True)
class RenderedConfig:
    """Config document of one live node and where it gets installed"""
    target: NodeIdentity
    document: Union[CoordinationDocument, DataStoreDocument]
    path: Path

    def to_bytes(self) -> bytes:
        return to_xml(self.document)


class ConfigRenderer:
    """
    Renders node configuration as a pure function of (topology, target).

    Nothing is cached or patched: every call derives the document from the
    snapshot it is given, so the same snapshot and target always produce
    byte-identical output.
    """

    def __init__(self, allocator: PortAllocator, coordination_tracks_datastores: bool = False):
        self.allocator = allocator
        self.coordination_tracks_datastores = coordination_tracks_datastores
        self.logger = logging.getLogger("ConfigRenderer")

    def render(self, topology: Topology, target: NodeIdentity) -> RenderedConfig:
        """
        Render the config document for a single live node

        Args:
            topology: Snapshot to render from
            target: Node to render for

        Returns:
            RenderedConfig for the target

        Raises:
            UnknownMemberError: target is not a live member of the snapshot
        """
        if not topology.is_member(target):
            raise UnknownMemberError(target.kind, target.id)

        if target.kind == NodeKind.COORDINATION:
            document = self._coordination_document(topology, target.id)
        else:
            document = self._datastore_document(topology, target.id)

        path = self.allocator.paths_for(target.kind, target.id).config_file
        self.logger.debug(f"Rendered {target} from topology version {topology.version}")
        return RenderedConfig(target=target, document=document, path=path)

    def render_all(self, topology: Topology) -> List[RenderedConfig]:
        """Render every live node, coordination nodes first, ascending by id"""
        return [self.render(topology, identity) for identity in topology.identities()]

    def render_kind(self, topology: Topology, kind: NodeKind) -> List[RenderedConfig]:
        return [self.render(topology, identity) for identity in topology.identities(kind)]

    def _coordination_document(self, topology: Topology, node_id: int) -> CoordinationDocument:
        address = self.allocator.ports_for(NodeKind.COORDINATION, node_id)
        paths = self.allocator.paths_for(NodeKind.COORDINATION, node_id)

        peers = []
        for peer_id in sorted(topology.coordination_members):
            if peer_id == node_id:
                continue
            peer = self.allocator.ports_for(NodeKind.COORDINATION, peer_id)
            peers.append(RaftServer(id=peer_id, hostname=peer.host, port=peer.raft_port))

        allowed_clients = []
        if self.coordination_tracks_datastores:
            for datastore_id in sorted(topology.datastore_members):
                client = self.allocator.ports_for(NodeKind.DATASTORE, datastore_id)
                allowed_clients.append(ServerAddress(host=client.host, port=client.client_port))

        return CoordinationDocument(
            server_id=node_id,
            listen_host=address.host,
            tcp_port=address.client_port,
            raft_port=address.raft_port,
            logger=LogConfig(
                log=str(paths.log_dir / "clickhouse-keeper.log"),
                errorlog=str(paths.log_dir / "clickhouse-keeper.err.log"),
            ),
            log_storage_path=str(paths.data_dir / "log"),
            snapshot_storage_path=str(paths.data_dir / "snapshots"),
            peers=peers,
            allowed_clients=allowed_clients,
        )

    def _datastore_document(self, topology: Topology, node_id: int) -> DataStoreDocument:
        address = self.allocator.ports_for(NodeKind.DATASTORE, node_id)
        paths = self.allocator.paths_for(NodeKind.DATASTORE, node_id)

        coordination_nodes = []
        for coordination_id in sorted(topology.coordination_members):
            node = self.allocator.ports_for(NodeKind.COORDINATION, coordination_id)
            coordination_nodes.append(ServerAddress(host=node.host, port=node.client_port))

        return DataStoreDocument(
            server_id=node_id,
            cluster_name=topology.cluster_name,
            listen_host=address.host,
            tcp_port=address.client_port,
            http_port=address.http_port,
            interserver_http_port=address.replication_port,
            logger=LogConfig(
                log=str(paths.log_dir / "clickhouse.log"),
                errorlog=str(paths.log_dir / "clickhouse.err.log"),
            ),
            data_path=str(paths.data_dir),
            macros=Macros(replica=node_id, cluster=topology.cluster_name),
            coordination_nodes=coordination_nodes,
        )


def json_schema() -> Dict[str, Any]:
    """JSON schema of the tagged config document union"""
    return config_document_adapter.json_schema()
