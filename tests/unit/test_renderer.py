"""
Test config rendering
"""
import xml.etree.ElementTree as ET
import pytest
from pathlib import Path
from clusterward.core.allocator import PortAllocator
from clusterward.core.errors import UnknownMemberError
from clusterward.core.models import NodeIdentity, NodeKind
from clusterward.core.topology import Topology
from clusterward.render.documents import CoordinationDocument, DataStoreDocument, config_document_adapter
from clusterward.render.renderer import ConfigRenderer, json_schema


def parse(rendered):
    return ET.fromstring(rendered.to_bytes())


class TestConfigRenderer:
    """Test ConfigRenderer"""

    def setup_method(self):
        self.allocator = PortAllocator(Path("/tmp/deployment"))
        self.renderer = ConfigRenderer(self.allocator)
        self.topology = Topology.create(3, 2, "test_cluster")

    def test_render_is_deterministic(self):
        """Test the same snapshot always renders the same bytes"""
        other = ConfigRenderer(PortAllocator(Path("/tmp/deployment")))

        for identity in self.topology.identities():
            first = self.renderer.render(self.topology, identity).to_bytes()
            second = other.render(self.topology, identity).to_bytes()
            assert first == second

    def test_coordination_config_lists_whole_ensemble(self):
        """Test raft_configuration holds every coordination member"""
        rendered = self.renderer.render(self.topology, NodeIdentity(NodeKind.COORDINATION, 1))
        root = parse(rendered)

        keeper = root.find("keeper_server")
        assert keeper.findtext("server_id") == "1"
        assert keeper.findtext("tcp_port") == "20001"
        assert keeper.findtext("enable_reconfiguration") == "true"
        servers = keeper.findall("raft_configuration/server")
        assert [s.findtext("id") for s in servers] == ["0", "1", "2"]
        assert [s.findtext("port") for s in servers] == ["21000", "21001", "21002"]
        assert rendered.path == Path("/tmp/deployment/coordination-1/config.xml")

    def test_coordination_peers_exclude_self(self):
        rendered = self.renderer.render(self.topology, NodeIdentity(NodeKind.COORDINATION, 0))

        assert [peer.id for peer in rendered.document.peers] == [1, 2]

    def test_datastore_config_points_at_ensemble(self):
        """Test data-store nodes know every coordination client address"""
        rendered = self.renderer.render(self.topology, NodeIdentity(NodeKind.DATASTORE, 1))
        root = parse(rendered)

        assert root.findtext("tcp_port") == "22001"
        assert root.findtext("http_port") == "23001"
        assert root.findtext("interserver_http_port") == "24001"
        assert root.findtext("macros/replica") == "1"
        assert root.findtext("macros/cluster") == "test_cluster"
        nodes = root.findall("zookeeper/node")
        assert [n.findtext("port") for n in nodes] == ["20000", "20001", "20002"]
        assert {n.findtext("host") for n in nodes} == {"::1"}

    def test_datastore_config_ignores_other_datastores(self):
        """Test data-store configs depend only on the ensemble"""
        target = NodeIdentity(NodeKind.DATASTORE, 0)
        before = self.renderer.render(self.topology, target).to_bytes()
        grown, _ = self.topology.add_member(NodeKind.DATASTORE)

        assert self.renderer.render(grown, target).to_bytes() == before

    def test_coordination_change_rerenders_datastores(self):
        target = NodeIdentity(NodeKind.DATASTORE, 0)
        before = self.renderer.render(self.topology, target).to_bytes()
        grown, _ = self.topology.add_member(NodeKind.COORDINATION)

        assert self.renderer.render(grown, target).to_bytes() != before

    def test_tracking_datastores_adds_allowed_clients(self):
        renderer = ConfigRenderer(self.allocator, coordination_tracks_datastores=True)
        root = parse(renderer.render(self.topology, NodeIdentity(NodeKind.COORDINATION, 0)))

        ports = [c.findtext("port") for c in root.findall("allowed_clients/client")]
        assert ports == ["22000", "22001"]
        assert parse(self.renderer.render(
            self.topology, NodeIdentity(NodeKind.COORDINATION, 0)
        )).find("allowed_clients") is None

    def test_render_removed_member(self):
        """Test tombstoned nodes cannot be rendered"""
        shrunk = self.topology.remove_member(NodeKind.COORDINATION, 2)

        with pytest.raises(UnknownMemberError):
            self.renderer.render(shrunk, NodeIdentity(NodeKind.COORDINATION, 2))

    def test_render_all(self):
        rendered = self.renderer.render_all(self.topology)

        assert [r.target for r in rendered] == self.topology.identities()
        assert len({r.path for r in rendered}) == 5

    def test_render_kind(self):
        rendered = self.renderer.render_kind(self.topology, NodeKind.DATASTORE)

        assert [r.target.id for r in rendered] == [0, 1]


class TestConfigDocuments:
    """Test the tagged document union"""

    def test_union_dispatches_on_kind(self):
        renderer = ConfigRenderer(PortAllocator(Path("/tmp/deployment")))
        topology = Topology.create(1, 1, "test_cluster")

        for rendered in renderer.render_all(topology):
            data = rendered.document.model_dump()
            document = config_document_adapter.validate_python(data)
            assert type(document) is type(rendered.document)
            assert document == rendered.document

    def test_json_schema(self):
        schema = json_schema()

        assert schema["discriminator"]["propertyName"] == "kind"
        assert set(schema["discriminator"]["mapping"]) == {"coordination", "datastore"}
        assert CoordinationDocument.__name__ in schema["$defs"]
        assert DataStoreDocument.__name__ in schema["$defs"]


if __name__ == '__main__':
    pytest.main([__file__])
