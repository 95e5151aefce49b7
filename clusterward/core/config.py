"""
Configuration management for clusterward deployments
"""
import json
import os
from enum import Enum
from pathlib import Path
from typing import Literal, Optional
from pydantic import BaseModel, Field


DEPLOYMENT_DIR = "deployment"


class BasePorts(BaseModel):
    """Base listen ports; a node's port is its base port plus its id"""
    coordination_client: int = Field(default=20000, ge=1024, le=65535)
    coordination_raft: int = Field(default=21000, ge=1024, le=65535)
    datastore_tcp: int = Field(default=22000, ge=1024, le=65535)
    datastore_http: int = Field(default=23000, ge=1024, le=65535)
    datastore_interserver: int = Field(default=24000, ge=1024, le=65535)


class QuorumMode(str, Enum):
    MAJORITY = "majority"
    NONE = "none"


class QuorumPolicy(BaseModel):
    """
    Quorum-safety rule applied before removing a coordination node

    In majority mode the ensemble must keep at least ceil((n + 1) / 2)
    members, where n is the size before the removal. The minimum member
    count applies in every mode.
    """
    mode: QuorumMode = QuorumMode.MAJORITY
    min_coordination_members: int = Field(default=1, ge=1)

    def threshold(self, ensemble_size: int) -> int:
        """Minimum ensemble size that must remain after a removal"""
        required = self.min_coordination_members
        if self.mode == QuorumMode.MAJORITY:
            required = max(required, (ensemble_size + 2) // 2)
        return required

    def allows_removal(self, ensemble_size: int) -> bool:
        return ensemble_size - 1 >= self.threshold(ensemble_size)


class DeploymentConfig(BaseModel):
    """Main configuration for a deployment"""
    path: Path = Field(default_factory=Path.cwd)
    deployment_dir_name: str = DEPLOYMENT_DIR
    cluster_name: str = "test_cluster"
    host: str = "::1"
    base_ports: BasePorts = Field(default_factory=BasePorts)
    quorum: QuorumPolicy = Field(default_factory=QuorumPolicy)
    # Coordination nodes carry a client allowlist of data-store nodes and
    # are re-rendered on every data-store membership change.
    coordination_tracks_datastores: bool = False
    coordination_timeout: float = Field(default=30.0, gt=0)  # seconds
    control_client: Literal["keeper", "http"] = "keeper"
    control_url: Optional[str] = None
    clickhouse_binary: str = "clickhouse"
    log_level: str = "INFO"

    @property
    def deployment_dir(self) -> Path:
        """Directory holding every node directory and the topology record"""
        return self.path / self.deployment_dir_name

    @classmethod
    def from_env(cls) -> "DeploymentConfig":
        """Create configuration from environment variables"""
        values = {}
        if os.getenv("CLUSTERWARD_PATH"):
            values["path"] = Path(os.environ["CLUSTERWARD_PATH"])
        if os.getenv("CLUSTERWARD_CLUSTER_NAME"):
            values["cluster_name"] = os.environ["CLUSTERWARD_CLUSTER_NAME"]
        if os.getenv("CLUSTERWARD_HOST"):
            values["host"] = os.environ["CLUSTERWARD_HOST"]
        if os.getenv("CLUSTERWARD_COORDINATION_TIMEOUT"):
            values["coordination_timeout"] = float(os.environ["CLUSTERWARD_COORDINATION_TIMEOUT"])
        if os.getenv("CLUSTERWARD_CONTROL_CLIENT"):
            values["control_client"] = os.environ["CLUSTERWARD_CONTROL_CLIENT"]
        if os.getenv("CLUSTERWARD_CONTROL_URL"):
            values["control_url"] = os.environ["CLUSTERWARD_CONTROL_URL"]
        if os.getenv("CLUSTERWARD_CLICKHOUSE_BINARY"):
            values["clickhouse_binary"] = os.environ["CLUSTERWARD_CLICKHOUSE_BINARY"]
        if os.getenv("CLUSTERWARD_LOG_LEVEL"):
            values["log_level"] = os.environ["CLUSTERWARD_LOG_LEVEL"]
        return cls(**values)

    @classmethod
    def load_from_file(cls, file_path: str) -> "DeploymentConfig":
        """Load configuration from JSON file"""
        with open(file_path, 'r') as f:
            data = json.load(f)
        return cls(**data)

    def save_to_file(self, file_path: str) -> None:
        """Save configuration to JSON file"""
        with open(file_path, 'w') as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)
