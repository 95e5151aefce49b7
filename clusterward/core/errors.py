"""
Error taxonomy for topology management and reconfiguration
"""
from typing import Optional


class ClusterwardError(Exception):
    """Base class for every error raised by clusterward"""


class InvalidSizeError(ClusterwardError):
    """Requested cluster size is not valid for a deployment"""


class UnknownMemberError(ClusterwardError):
    """Node id is not a current member of its kind"""

    def __init__(self, kind, node_id: int):
        self.kind = kind
        self.node_id = node_id
        super().__init__(f"No such {kind.value} node: {node_id}")


class QuorumViolationError(ClusterwardError):
    """Removing a coordination node would break the ensemble's quorum"""

    def __init__(self, current_size: int, required: int):
        self.current_size = current_size
        self.required = required
        super().__init__(
            f"Removing a coordination node from an ensemble of {current_size} "
            f"would leave {current_size - 1}; at least {required} are required"
        )


class ConcurrentReconfigurationError(ClusterwardError):
    """Another reconfiguration holds the deployment lock"""


class CoordinationServiceError(ClusterwardError):
    """Coordination-service control API call did not succeed"""


class CoordinationServiceTimeoutError(CoordinationServiceError):
    """Control API call did not acknowledge in time"""


class CoordinationServiceRejectedError(CoordinationServiceError):
    """Control API call was answered with an error"""


class ConfigWriteError(ClusterwardError):
    """Rendered config could not be installed"""

    def __init__(self, path, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to write config {path}: {cause}")


class PartialCommitError(ClusterwardError):
    """
    The coordination ensemble acknowledged a change that was not persisted.

    The persisted topology and the ensemble may now disagree. Run
    reconciliation instead of retrying the original operation.
    """

    def __init__(self, applied_change: str, cause: Optional[Exception] = None):
        self.applied_change = applied_change
        self.cause = cause
        message = f"Applied '{applied_change}' but failed to commit topology"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class DeploymentNotFoundError(ClusterwardError):
    """No persisted topology in the deployment directory"""


class DeploymentExistsError(ClusterwardError):
    """A topology is already persisted in the deployment directory"""


class CorruptTopologyError(ClusterwardError):
    """Persisted topology could not be parsed"""


class StaleTopologyError(ClusterwardError):
    """Topology version does not strictly increase over the persisted one"""

    def __init__(self, persisted: int, attempted: int):
        self.persisted = persisted
        self.attempted = attempted
        super().__init__(
            f"Refusing to persist topology version {attempted}; "
            f"version {persisted} is already committed"
        )


class LifecycleError(ClusterwardError):
    """Node process could not be started or stopped"""
