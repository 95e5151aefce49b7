"""
Node identity and derived addressing types
"""
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


class NodeKind(str, Enum):
    """The two kinds of node in a deployment"""
    COORDINATION = "coordination"
    DATASTORE = "datastore"


@dataclass(frozen=True, order=True)
class NodeIdentity:
    """A node is identified by its kind and an id unique within that kind"""
    kind: NodeKind
    id: int

    def __str__(self) -> str:
        return f"{self.kind.value}-{self.id}"


def format_hostport(host: str, port: int) -> str:
    """Join host and port, bracketing bare IPv6 literals"""
    if ':' in host and not host.startswith('['):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


@dataclass(frozen=True)
class NodeAddress:
    """Listen addresses of a node, derived from its identity"""
    host: str
    client_port: int
    raft_port: Optional[int] = None
    replication_port: Optional[int] = None
    http_port: Optional[int] = None

    @property
    def client_address(self) -> str:
        return format_hostport(self.host, self.client_port)

    @property
    def raft_address(self) -> str:
        if self.raft_port is None:
            raise ValueError("Node has no raft port")
        return format_hostport(self.host, self.raft_port)


@dataclass(frozen=True)
class NodePaths:
    """Filesystem layout of a single node below the deployment directory"""
    node_dir: Path
    config_file: Path
    data_dir: Path
    log_dir: Path
    pid_file: Path

    @property
    def config_dir(self) -> Path:
        return self.config_file.parent
