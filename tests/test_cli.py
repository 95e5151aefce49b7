"""
Test the command line interface
"""
import json
import logging
import pytest
from click.testing import CliRunner
from clusterward.cli import cli
from clusterward.core.config import DeploymentConfig


@pytest.fixture(autouse=True)
def restore_logging():
    """The cli installs root handlers bound to the runner's streams"""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestCli:
    """Test clusterward commands"""

    def setup_method(self):
        self.runner = CliRunner()

    def invoke(self, tmp_path, *args):
        return self.runner.invoke(
            cli,
            ['--path', str(tmp_path), *args],
            env={'CLUSTERWARD_LOG_LEVEL': 'WARNING'},
        )

    def test_gen_config_and_show(self, tmp_path):
        """Test generating a deployment and showing it"""
        result = self.invoke(tmp_path, 'gen-config', '--num-keepers', '3', '--num-replicas', '2')

        assert result.exit_code == 0, result.output
        assert "committed topology version 1" in result.output
        assert (tmp_path / "deployment" / "coordination-2" / "config.xml").exists()

        result = self.invoke(tmp_path, 'show')

        assert result.exit_code == 0, result.output
        assert "Version: 1" in result.output
        assert "Coordination nodes (3):" in result.output
        assert "Datastore nodes (2):" in result.output
        assert "raft [::1]:21002" in result.output

    def test_gen_config_twice(self, tmp_path):
        self.invoke(tmp_path, 'gen-config', '--num-keepers', '1', '--num-replicas', '1')

        result = self.invoke(tmp_path, 'gen-config', '--num-keepers', '1', '--num-replicas', '1')

        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_invalid_size(self, tmp_path):
        result = self.invoke(tmp_path, 'gen-config', '--num-keepers', '0', '--num-replicas', '1')

        assert result.exit_code == 1
        assert "At least one coordination node" in result.output
        assert not (tmp_path / "deployment").exists()

    def test_show_without_deployment(self, tmp_path):
        result = self.invoke(tmp_path, 'show')

        assert result.exit_code == 1
        assert "No deployment found" in result.output

    def test_corrupt_topology_record(self, tmp_path):
        self.invoke(tmp_path, 'gen-config', '--num-keepers', '1', '--num-replicas', '1')
        (tmp_path / "deployment" / "clusterward-topology.json").write_bytes(b"\xff\xfe")

        result = self.invoke(tmp_path, 'show')

        assert result.exit_code == 1
        assert "Cannot read" in result.output

    def test_add_and_remove_server(self, tmp_path):
        """Test data-store changes without starting processes"""
        self.invoke(tmp_path, 'gen-config', '--num-keepers', '3', '--num-replicas', '2')

        result = self.invoke(tmp_path, 'add-server', '--no-start')

        assert result.exit_code == 0, result.output
        assert "committed topology version 2" in result.output
        assert "datastore-2" in result.output

        result = self.invoke(tmp_path, 'remove-server', '0')

        assert result.exit_code == 0, result.output
        assert "committed topology version 3" in result.output

        result = self.invoke(tmp_path, 'remove-server', '0')

        assert result.exit_code == 1
        assert "No such datastore node: 0" in result.output

    def test_remove_keeper_quorum(self, tmp_path):
        self.invoke(tmp_path, 'gen-config', '--num-keepers', '2', '--num-replicas', '1')

        result = self.invoke(tmp_path, 'remove-keeper', '1')

        assert result.exit_code == 1
        assert "at least 2 are required" in result.output

    def test_render(self, tmp_path):
        self.invoke(tmp_path, 'gen-config', '--num-keepers', '3', '--num-replicas', '2')

        result = self.invoke(tmp_path, 'render', 'datastore', '1')

        assert result.exit_code == 0, result.output
        assert result.output.startswith("<clickhouse>")
        assert "<tcp_port>22001</tcp_port>" in result.output
        written = tmp_path / "deployment" / "datastore-1" / "config.xml"
        assert result.output == written.read_text()

    def test_render_unknown_node(self, tmp_path):
        self.invoke(tmp_path, 'gen-config', '--num-keepers', '1', '--num-replicas', '0')

        result = self.invoke(tmp_path, 'render', 'datastore', '0')

        assert result.exit_code == 1

    def test_schema(self, tmp_path):
        result = self.invoke(tmp_path, 'schema')

        assert result.exit_code == 0
        assert json.loads(result.output)["discriminator"]["propertyName"] == "kind"

    def test_status(self, tmp_path):
        self.invoke(tmp_path, 'gen-config', '--num-keepers', '1', '--num-replicas', '1')

        result = self.invoke(tmp_path, 'status')

        assert result.exit_code == 0, result.output
        assert "stopped  coordination-0" in result.output
        assert "stopped  datastore-0" in result.output

    def test_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "clusterward.log"

        result = self.invoke(tmp_path, '-v', '--log-file', str(log_file),
                             'gen-config', '--num-keepers', '1', '--num-replicas', '0')

        assert result.exit_code == 0, result.output
        assert "Committed topology version 1" in log_file.read_text()

    def test_init_config(self, tmp_path):
        """Test writing a config file and using it"""
        output = tmp_path / "clusterward.json"

        result = self.invoke(tmp_path, '--cluster-name', 'analytics', 'init-config', '-o', str(output))

        assert result.exit_code == 0, result.output
        config = DeploymentConfig.load_from_file(str(output))
        assert config.cluster_name == "analytics"
        assert config.path == tmp_path

        result = self.runner.invoke(
            cli,
            ['--config', str(output), 'gen-config', '--num-keepers', '1', '--num-replicas', '1'],
            env={'CLUSTERWARD_LOG_LEVEL': 'WARNING'},
        )

        assert result.exit_code == 0, result.output
        assert "<cluster>analytics</cluster>" in (
            tmp_path / "deployment" / "datastore-0" / "config.xml"
        ).read_text()


if __name__ == '__main__':
    pytest.main([__file__])
