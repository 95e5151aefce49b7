"""
Per-node configuration documents

Each node kind has its own document model. The union is tagged by
``kind`` so a document can be validated or schema-dumped without knowing
its kind up front.
"""
import xml.etree.ElementTree as ET
from typing import Annotated, List, Literal, Union
from pydantic import BaseModel, Field, TypeAdapter


class ServerAddress(BaseModel):
    host: str
    port: int


class RaftServer(BaseModel):
    id: int
    hostname: str
    port: int


class LogConfig(BaseModel):
    level: Literal["trace", "debug", "information"] = "trace"
    log: str
    errorlog: str
    size: str = "100M"
    count: int = 1

    def to_element(self) -> ET.Element:
        logger = ET.Element("logger")
        _sub(logger, "level", self.level)
        _sub(logger, "log", self.log)
        _sub(logger, "errorlog", self.errorlog)
        _sub(logger, "size", self.size)
        _sub(logger, "count", self.count)
        return logger


class CoordinationSettings(BaseModel):
    operation_timeout_ms: int = 10000
    session_timeout_ms: int = 30000
    raft_logs_level: Literal["trace", "debug", "information"] = "trace"


class Macros(BaseModel):
    shard: int = 1
    replica: int
    cluster: str


class CoordinationDocument(BaseModel):
    """Config of a single coordination (keeper) node"""
    kind: Literal["coordination"] = "coordination"
    server_id: int
    listen_host: str
    tcp_port: int
    raft_port: int
    logger: LogConfig
    log_storage_path: str
    snapshot_storage_path: str
    coordination_settings: CoordinationSettings = Field(default_factory=CoordinationSettings)
    # Every other ensemble member, ascending by id
    peers: List[RaftServer] = Field(default_factory=list)
    allowed_clients: List[ServerAddress] = Field(default_factory=list)

    def raft_servers(self) -> List[RaftServer]:
        """The full ensemble including this node, ascending by id"""
        own = RaftServer(id=self.server_id, hostname=self.listen_host, port=self.raft_port)
        return sorted([own, *self.peers], key=lambda server: server.id)

    def to_element(self) -> ET.Element:
        root = ET.Element("clickhouse")
        root.append(self.logger.to_element())
        _sub(root, "listen_host", self.listen_host)

        keeper = ET.SubElement(root, "keeper_server")
        _sub(keeper, "enable_reconfiguration", "true")
        _sub(keeper, "tcp_port", self.tcp_port)
        _sub(keeper, "server_id", self.server_id)
        _sub(keeper, "log_storage_path", self.log_storage_path)
        _sub(keeper, "snapshot_storage_path", self.snapshot_storage_path)

        settings = ET.SubElement(keeper, "coordination_settings")
        _sub(settings, "operation_timeout_ms", self.coordination_settings.operation_timeout_ms)
        _sub(settings, "session_timeout_ms", self.coordination_settings.session_timeout_ms)
        _sub(settings, "raft_logs_level", self.coordination_settings.raft_logs_level)

        raft = ET.SubElement(keeper, "raft_configuration")
        for server in self.raft_servers():
            entry = ET.SubElement(raft, "server")
            _sub(entry, "id", server.id)
            _sub(entry, "hostname", server.hostname)
            _sub(entry, "port", server.port)

        if self.allowed_clients:
            clients = ET.SubElement(root, "allowed_clients")
            for client in self.allowed_clients:
                entry = ET.SubElement(clients, "client")
                _sub(entry, "host", client.host)
                _sub(entry, "port", client.port)
        return root


class DataStoreDocument(BaseModel):
    """Config of a single data-store (server) node"""
    kind: Literal["datastore"] = "datastore"
    server_id: int
    cluster_name: str
    listen_host: str
    tcp_port: int
    http_port: int
    interserver_http_port: int
    logger: LogConfig
    data_path: str
    macros: Macros
    # Client addresses of the whole ensemble, ascending by id
    coordination_nodes: List[ServerAddress] = Field(default_factory=list)

    def to_element(self) -> ET.Element:
        root = ET.Element("clickhouse")
        root.append(self.logger.to_element())
        _sub(root, "path", self.data_path)
        _sub(root, "user_files_path", f"{self.data_path}/user_files")
        _sub(root, "format_schema_path", f"{self.data_path}/format_schemas")

        profiles = ET.SubElement(root, "profiles")
        default_profile = ET.SubElement(profiles, "default")
        _sub(default_profile, "load_balancing", "random")

        users = ET.SubElement(root, "users")
        default_user = ET.SubElement(users, "default")
        _sub(default_user, "password", "")
        networks = ET.SubElement(default_user, "networks")
        _sub(networks, "ip", "::/0")
        _sub(default_user, "profile", "default")
        _sub(default_user, "quota", "default")

        quotas = ET.SubElement(root, "quotas")
        ET.SubElement(quotas, "default")

        _sub(root, "default_profile", "default")
        _sub(root, "display_name", f"{self.cluster_name}-{self.server_id}")
        _sub(root, "listen_host", self.listen_host)
        _sub(root, "http_port", self.http_port)
        _sub(root, "tcp_port", self.tcp_port)
        _sub(root, "interserver_http_port", self.interserver_http_port)
        _sub(root, "interserver_http_host", self.listen_host)

        macros = ET.SubElement(root, "macros")
        _sub(macros, "shard", self.macros.shard)
        _sub(macros, "replica", self.macros.replica)
        _sub(macros, "cluster", self.macros.cluster)

        zookeeper = ET.SubElement(root, "zookeeper")
        for node in self.coordination_nodes:
            entry = ET.SubElement(zookeeper, "node")
            _sub(entry, "host", node.host)
            _sub(entry, "port", node.port)
        return root


ConfigDocument = Annotated[
    Union[CoordinationDocument, DataStoreDocument],
    Field(discriminator="kind"),
]

config_document_adapter = TypeAdapter(ConfigDocument)


def to_xml(document: Union[CoordinationDocument, DataStoreDocument]) -> bytes:
    """Encode a document; identical documents always encode to identical bytes"""
    root = document.to_element()
    ET.indent(root, space="    ")
    return (ET.tostring(root, encoding="unicode") + "\n").encode("utf-8")


def _sub(parent: ET.Element, tag: str, text) -> ET.Element:
    element = ET.SubElement(parent, tag)
    element.text = str(text)
    return element
