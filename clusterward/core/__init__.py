"""
Core types: identities, addressing, topology, settings and errors.
"""
from .allocator import PortAllocator
from .config import BasePorts, DeploymentConfig, QuorumMode, QuorumPolicy
from .models import NodeAddress, NodeIdentity, NodeKind, NodePaths
from .topology import Topology

__all__ = [
    'PortAllocator',
    'BasePorts',
    'DeploymentConfig',
    'QuorumMode',
    'QuorumPolicy',
    'NodeAddress',
    'NodeIdentity',
    'NodeKind',
    'NodePaths',
    'Topology',
]
