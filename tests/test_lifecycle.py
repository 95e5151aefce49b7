"""
Test starting and stopping node processes
"""
import subprocess
import sys
import pytest
from clusterward.core.allocator import PortAllocator
from clusterward.core.errors import LifecycleError
from clusterward.core.models import NodeIdentity, NodeKind
from clusterward.core.topology import Topology
from clusterward.engine.lifecycle import ProcessManager


class TestProcessManager:
    """Test ProcessManager"""

    def setup_method(self):
        self.identity = NodeIdentity(NodeKind.DATASTORE, 0)

    def manager(self, tmp_path, binary="clickhouse"):
        return ProcessManager(PortAllocator(tmp_path), binary)

    def test_start_without_config(self, tmp_path):
        with pytest.raises(LifecycleError):
            self.manager(tmp_path).start(self.identity)

    def test_start_missing_binary(self, tmp_path):
        manager = self.manager(tmp_path, binary=str(tmp_path / "no-such-binary"))
        paths = manager.allocator.paths_for(self.identity.kind, self.identity.id)
        paths.node_dir.mkdir(parents=True)
        paths.config_file.write_text("<clickhouse/>\n")

        with pytest.raises(LifecycleError):
            manager.start(self.identity, paths.config_file)

    def test_stop_without_pid(self, tmp_path):
        manager = self.manager(tmp_path)

        assert manager.pid(self.identity) is None
        assert not manager.is_running(self.identity)
        with pytest.raises(LifecycleError):
            manager.stop(self.identity)

    def test_stop_running_process(self, tmp_path):
        """Test stop terminates the recorded process and clears its pid"""
        manager = self.manager(tmp_path)
        paths = manager.allocator.paths_for(self.identity.kind, self.identity.id)
        paths.node_dir.mkdir(parents=True)
        process = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
        paths.pid_file.write_text(f"{process.pid}\n")

        try:
            assert manager.is_running(self.identity)
            manager.stop(self.identity)
            process.wait(timeout=5)
        finally:
            if process.poll() is None:
                process.kill()

        assert not paths.pid_file.exists()
        assert not manager.is_running(self.identity)

    def test_malformed_pid_file(self, tmp_path):
        manager = self.manager(tmp_path)
        paths = manager.allocator.paths_for(self.identity.kind, self.identity.id)
        paths.node_dir.mkdir(parents=True)
        paths.pid_file.write_text("not a pid")

        assert manager.pid(self.identity) is None

    def test_teardown_and_status_of_stopped_nodes(self, tmp_path):
        manager = self.manager(tmp_path)
        topology = Topology.create(1, 1, "test_cluster")

        manager.teardown(topology)

        assert manager.status(topology) == {"coordination-0": False, "datastore-0": False}


if __name__ == '__main__':
    pytest.main([__file__])
