"""
Shared fixtures and test doubles
"""
import pytest
from clusterward.core.config import DeploymentConfig
from clusterward.core.errors import CoordinationServiceError, CoordinationServiceTimeoutError
from clusterward.engine.coordination import CoordinationClient
from clusterward.engine.lifecycle import ProcessLifecycle
from clusterward.engine.reconfigure import ReconfigurationEngine


class FakeCoordinationClient(CoordinationClient):
    """In-memory ensemble that records every control call"""

    def __init__(self, members=None):
        self.members = dict(members or {})
        self.calls = []
        self.fail_with = None
        self.unreachable = set()

    def add_member(self, endpoint, member_id, raft_address):
        self.calls.append(("add", endpoint.client_port, member_id, raft_address))
        self._check(endpoint)
        self.members[member_id] = raft_address

    def remove_member(self, endpoint, member_id):
        self.calls.append(("remove", endpoint.client_port, member_id))
        self._check(endpoint)
        self.members.pop(member_id, None)

    def get_members(self, endpoint):
        self.calls.append(("get", endpoint.client_port))
        self._check(endpoint)
        return dict(self.members)

    def _check(self, endpoint):
        if endpoint.client_port in self.unreachable:
            raise CoordinationServiceError(f"{endpoint.client_address} is unreachable")
        if self.fail_with is not None:
            raise self.fail_with


class FakeLifecycle(ProcessLifecycle):
    def __init__(self):
        self.started = []
        self.stopped = []

    def start(self, identity, config_path):
        self.started.append((identity, config_path))

    def stop(self, identity):
        self.stopped.append(identity)


@pytest.fixture
def config(tmp_path):
    return DeploymentConfig(path=tmp_path, cluster_name="test_cluster")


@pytest.fixture
def coordination_client():
    return FakeCoordinationClient()


@pytest.fixture
def lifecycle():
    return FakeLifecycle()


@pytest.fixture
def engine(config, coordination_client, lifecycle):
    return ReconfigurationEngine(config, coordination_client=coordination_client, lifecycle=lifecycle)


@pytest.fixture
def deployed(engine, coordination_client):
    """Three coordination nodes and two data-store nodes, committed at version 1"""
    engine.generate(3, 2)
    for member_id in range(3):
        coordination_client.members[member_id] = f"[::1]:{21000 + member_id}"
    return engine


@pytest.fixture
def timeout_error():
    return CoordinationServiceTimeoutError("no acknowledgment within 30s")
