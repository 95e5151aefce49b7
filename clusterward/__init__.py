"""
clusterward

Generates, deploys and reconfigures local clusters made of a Keeper-style
coordination ensemble and ClickHouse-style data-store servers. Membership
lives in a versioned topology; every node config is rendered from it and
every change goes through the reconfiguration engine.
"""

__version__ = "0.1.0"

from .core.config import DeploymentConfig
from .core.models import NodeIdentity, NodeKind
from .core.topology import Topology
from .engine.reconfigure import ReconfigurationEngine
from .render.renderer import ConfigRenderer

__all__ = [
    "DeploymentConfig",
    "NodeIdentity",
    "NodeKind",
    "Topology",
    "ReconfigurationEngine",
    "ConfigRenderer",
]
