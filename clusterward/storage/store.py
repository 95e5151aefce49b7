"""
Durable storage of the committed topology.

The deployment directory holds a single JSON record with the current
topology. The record is replaced atomically (temporary file, fsync,
rename) so a crash leaves either the previous version or the new one,
and a record whose version does not strictly increase is refused.
"""
import json
import logging
import time
from pathlib import Path
from typing import Optional
from pydantic import ValidationError
from clusterward.core.errors import (
    CorruptTopologyError,
    DeploymentNotFoundError,
    StaleTopologyError,
)
from clusterward.core.topology import Topology
from .files import atomic_write


TOPOLOGY_FILENAME = "clusterward-topology.json"


class TopologyStore:
    """
    Persistence of the topology for one deployment directory.

    Reads take no lock and always return the last committed version.
    Writes are expected to run under the deployment lock.
    """

    def __init__(self, deployment_dir: Path):
        self.deployment_dir = Path(deployment_dir)
        self.topology_file = self.deployment_dir / TOPOLOGY_FILENAME
        self.logger = logging.getLogger("TopologyStore")

    def exists(self) -> bool:
        """Check whether a topology has been committed"""
        return self.topology_file.exists()

    def load(self) -> Topology:
        """
        Load the committed topology

        Returns:
            The last committed Topology

        Raises:
            DeploymentNotFoundError: nothing has been committed yet
            CorruptTopologyError: the record cannot be parsed
        """
        if not self.exists():
            raise DeploymentNotFoundError(
                f"No deployment found at {self.deployment_dir}: is your path correct?"
            )

        try:
            with open(self.topology_file, 'r', encoding='utf-8') as f:
                state = json.load(f)
            topology = Topology.model_validate(state['topology'])
        except (OSError, UnicodeDecodeError, json.JSONDecodeError,
                KeyError, TypeError, ValidationError) as e:
            raise CorruptTopologyError(f"Cannot read {self.topology_file}: {e}") from e

        self.logger.debug(f"Loaded topology version {topology.version}")
        return topology

    def save(self, topology: Topology):
        """
        Commit a topology

        Args:
            topology: Topology to persist; its version must be greater than
                the committed one

        Raises:
            StaleTopologyError: version does not strictly increase
        """
        persisted = self.persisted_version()
        if persisted is not None and topology.version <= persisted:
            raise StaleTopologyError(persisted, topology.version)

        state = {
            'timestamp': time.time(),
            'topology': topology.model_dump(mode='json'),
        }
        with atomic_write(self.topology_file, 'w') as f:
            json.dump(state, f, indent=2, sort_keys=True)

        self.logger.info(f"Committed topology version {topology.version}")

    def persisted_version(self) -> Optional[int]:
        """Version of the committed topology, or None if there is none"""
        if not self.exists():
            return None
        return self.load().version

    def get_last_save_time(self) -> Optional[float]:
        """Modification time of the committed record"""
        if not self.exists():
            return None
        return self.topology_file.stat().st_mtime
