"""
Starting and stopping node processes
"""
import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional
import psutil
from clusterward.core.allocator import PortAllocator
from clusterward.core.errors import LifecycleError
from clusterward.core.models import NodeIdentity, NodeKind
from clusterward.core.topology import Topology


class ProcessLifecycle(ABC):
    """Start/stop contract used by the reconfiguration engine"""

    @abstractmethod
    def start(self, identity: NodeIdentity, config_path: Path) -> None:
        """Launch the node with the given config"""

    @abstractmethod
    def stop(self, identity: NodeIdentity) -> None:
        """Stop the node, leaving its files in place"""


class ProcessManager(ProcessLifecycle):
    """
    Runs nodes as detached ``clickhouse keeper`` / ``clickhouse server``
    processes that record their pid in the node directory.
    """

    STOP_TIMEOUT = 10  # seconds before a terminated node is killed

    def __init__(self, allocator: PortAllocator, binary: str = "clickhouse"):
        self.allocator = allocator
        self.binary = binary
        self.logger = logging.getLogger("ProcessManager")

    def start(self, identity: NodeIdentity, config_path: Optional[Path] = None) -> None:
        paths = self.allocator.paths_for(identity.kind, identity.id)
        config_path = Path(config_path or paths.config_file)
        if not config_path.exists():
            raise LifecycleError(f"No config for {identity} at {config_path}")

        paths.log_dir.mkdir(parents=True, exist_ok=True)
        mode = "keeper" if identity.kind == NodeKind.COORDINATION else "server"
        command = [self.binary, mode, "-C", str(config_path), "--pidfile", str(paths.pid_file)]

        self.logger.info(f"Starting {identity}: {paths.node_dir}")
        try:
            subprocess.Popen(
                command,
                cwd=paths.node_dir,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise LifecycleError(f"Failed to start {identity}: {e}") from e

    def stop(self, identity: NodeIdentity) -> None:
        paths = self.allocator.paths_for(identity.kind, identity.id)
        pid = self.pid(identity)
        if pid is None:
            raise LifecycleError(f"No pid file for {identity} at {paths.pid_file}")

        try:
            process = psutil.Process(pid)
            # The server forks a watchdog; take the whole tree down
            processes = [process, *process.children(recursive=True)]
        except psutil.NoSuchProcess:
            self.logger.warning(f"{identity} (pid {pid}) is not running")
            processes = []

        self.logger.info(f"Stopping {identity} at pid {pid}")
        for proc in processes:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                pass

        _, alive = psutil.wait_procs(processes, timeout=self.STOP_TIMEOUT)
        for proc in alive:
            self.logger.warning(f"Killing pid {proc.pid} of {identity}")
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                pass

        paths.pid_file.unlink(missing_ok=True)

    def pid(self, identity: NodeIdentity) -> Optional[int]:
        """Pid recorded by the node, if any"""
        pid_file = self.allocator.paths_for(identity.kind, identity.id).pid_file
        if not pid_file.exists():
            return None
        try:
            return int(pid_file.read_text().strip())
        except ValueError:
            self.logger.warning(f"Ignoring malformed pid file {pid_file}")
            return None

    def is_running(self, identity: NodeIdentity) -> bool:
        pid = self.pid(identity)
        if pid is None:
            return False
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False

    def deploy(self, topology: Topology) -> None:
        """Start every live node: the ensemble first, then the data-store nodes"""
        for identity in topology.identities():
            self.start(identity)

    def teardown(self, topology: Topology) -> None:
        """Stop every live node; nodes that are already down are only logged"""
        for identity in topology.identities():
            try:
                self.stop(identity)
            except LifecycleError as e:
                self.logger.warning(f"Could not stop {identity}: {e}")

    def status(self, topology: Topology) -> Dict[str, bool]:
        return {str(identity): self.is_running(identity) for identity in topology.identities()}
