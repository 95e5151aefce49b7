"""
Deterministic mapping from node identity to ports and paths
"""
from pathlib import Path
from .config import BasePorts
from .models import NodeAddress, NodeKind, NodePaths


CONFIG_FILENAME = "config.xml"
PID_FILENAME = "node.pid"


class PortAllocator:
    """
    Derives every address and directory of a node from its kind and id.

    Both mappings are pure: no I/O, no state. For a fixed kind the
    id -> port mapping is injective because each port is base + id.
    """

    def __init__(self, deployment_dir: Path, base_ports: BasePorts = None, host: str = "::1"):
        self.deployment_dir = Path(deployment_dir)
        self.base_ports = base_ports or BasePorts()
        self.host = host

    def ports_for(self, kind: NodeKind, node_id: int) -> NodeAddress:
        _check_id(node_id)
        ports = self.base_ports
        if kind == NodeKind.COORDINATION:
            return NodeAddress(
                host=self.host,
                client_port=ports.coordination_client + node_id,
                raft_port=ports.coordination_raft + node_id,
            )
        return NodeAddress(
            host=self.host,
            client_port=ports.datastore_tcp + node_id,
            http_port=ports.datastore_http + node_id,
            replication_port=ports.datastore_interserver + node_id,
        )

    def paths_for(self, kind: NodeKind, node_id: int) -> NodePaths:
        _check_id(node_id)
        node_dir = self.deployment_dir / f"{kind.value}-{node_id}"
        data_dir = node_dir / ("coordination" if kind == NodeKind.COORDINATION else "data")
        return NodePaths(
            node_dir=node_dir,
            config_file=node_dir / CONFIG_FILENAME,
            data_dir=data_dir,
            log_dir=node_dir / "logs",
            pid_file=node_dir / PID_FILENAME,
        )


def _check_id(node_id: int):
    if node_id < 0:
        raise ValueError(f"Node ids are non-negative, got {node_id}")
