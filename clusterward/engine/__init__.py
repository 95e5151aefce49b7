"""
Reconfiguration engine and its external collaborators.
"""
from .coordination import (
    CoordinationClient,
    HttpCoordinationClient,
    KeeperCommandClient,
    build_coordination_client,
)
from .lifecycle import ProcessLifecycle, ProcessManager
from .reconfigure import (
    EngineState,
    ReconciliationReport,
    ReconfigurationEngine,
    ReconfigurationResult,
)

__all__ = [
    'CoordinationClient',
    'HttpCoordinationClient',
    'KeeperCommandClient',
    'build_coordination_client',
    'ProcessLifecycle',
    'ProcessManager',
    'EngineState',
    'ReconciliationReport',
    'ReconfigurationEngine',
    'ReconfigurationResult',
]
