"""
Durable topology storage, atomic file writes and the deployment lock.
"""
from .files import DeploymentLock, atomic_write, write_atomic
from .store import TopologyStore

__all__ = ['DeploymentLock', 'atomic_write', 'write_atomic', 'TopologyStore']
