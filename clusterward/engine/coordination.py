"""
Clients for the coordination service's membership control API
"""
import asyncio
import logging
import subprocess
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import aiohttp
from clusterward.core.config import DeploymentConfig
from clusterward.core.errors import (
    CoordinationServiceError,
    CoordinationServiceRejectedError,
    CoordinationServiceTimeoutError,
)
from clusterward.core.models import NodeAddress


class CoordinationClient(ABC):
    """
    Synchronous membership-change RPCs against a live ensemble member.

    Every call either returns after an explicit acknowledgment or raises a
    CoordinationServiceError. A timeout is always a failure.
    """

    @abstractmethod
    def add_member(self, endpoint: NodeAddress, member_id: int, raft_address: str) -> None:
        """Ask the ensemble to add ``member_id`` reachable at ``raft_address``"""

    @abstractmethod
    def remove_member(self, endpoint: NodeAddress, member_id: int) -> None:
        """Ask the ensemble to drop ``member_id``"""

    @abstractmethod
    def get_members(self, endpoint: NodeAddress) -> Dict[int, str]:
        """Current ensemble membership as {id: raft address}"""


class KeeperCommandClient(CoordinationClient):
    """Drives ``clickhouse keeper-client`` against a keeper's client port"""

    def __init__(self, binary: str = "clickhouse", timeout: float = 30.0):
        self.binary = binary
        self.timeout = timeout
        self.logger = logging.getLogger("KeeperCommandClient")

    def add_member(self, endpoint: NodeAddress, member_id: int, raft_address: str) -> None:
        output = self.query(endpoint, f'reconfig add "server.{member_id}={raft_address}"')
        if member_id not in parse_keeper_config(output):
            raise CoordinationServiceRejectedError(
                f"Keeper at {endpoint.client_address} did not acknowledge adding server {member_id}"
            )

    def remove_member(self, endpoint: NodeAddress, member_id: int) -> None:
        output = self.query(endpoint, f'reconfig remove "{member_id}"')
        if member_id in parse_keeper_config(output):
            raise CoordinationServiceRejectedError(
                f"Keeper at {endpoint.client_address} still lists server {member_id}"
            )

    def get_members(self, endpoint: NodeAddress) -> Dict[int, str]:
        return parse_keeper_config(self.query(endpoint, "get /keeper/config"))

    def query(self, endpoint: NodeAddress, query: str) -> str:
        """Run a single keeper-client query and return its stdout"""
        command = [
            self.binary, "keeper-client",
            "--host", endpoint.host,
            "--port", str(endpoint.client_port),
            "--query", query,
        ]
        self.logger.debug(f"Running {' '.join(command)}")

        try:
            result = subprocess.run(
                command,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CoordinationServiceTimeoutError(
                f"keeper-client query '{query}' timed out after {self.timeout}s"
            ) from e
        except OSError as e:
            raise CoordinationServiceError(f"Failed to run {self.binary} keeper-client: {e}") from e

        if result.returncode != 0:
            raise CoordinationServiceRejectedError(
                f"keeper-client query '{query}' failed with status "
                f"{result.returncode}: {result.stderr.strip()}"
            )
        return result.stdout


def parse_keeper_config(output: str) -> Dict[int, str]:
    """
    Parse keeper's dynamic configuration

    Lines look like ``server.1=[::1]:21001;participant;1``.

    Args:
        output: Text of /keeper/config

    Returns:
        Dictionary {server id: raft address}
    """
    members = {}
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        if not line.startswith("server.") or '=' not in line:
            raise CoordinationServiceRejectedError(f"Unexpected keeper config line: {line!r}")
        key, rest = line[len("server."):].split('=', 1)
        try:
            member_id = int(key)
        except ValueError:
            raise CoordinationServiceRejectedError(f"Unexpected keeper config line: {line!r}")
        members[member_id] = rest.split(';', 1)[0]
    return members


class HttpCoordinationClient(CoordinationClient):
    """
    JSON-over-HTTP control endpoint

    Routes: ``GET /members``, ``POST /members`` and ``DELETE /members/{id}``.
    When no base URL is configured the endpoint's client address is used.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: float = 30.0):
        self.base_url = base_url.rstrip('/') if base_url else None
        self.timeout = timeout
        self.logger = logging.getLogger("HttpCoordinationClient")

    def add_member(self, endpoint: NodeAddress, member_id: int, raft_address: str) -> None:
        asyncio.run(self._request(
            'POST',
            f"{self._url(endpoint)}/members",
            {"id": member_id, "address": raft_address},
        ))

    def remove_member(self, endpoint: NodeAddress, member_id: int) -> None:
        asyncio.run(self._request('DELETE', f"{self._url(endpoint)}/members/{member_id}"))

    def get_members(self, endpoint: NodeAddress) -> Dict[int, str]:
        result = asyncio.run(self._request('GET', f"{self._url(endpoint)}/members", parse=True))
        try:
            return {int(member_id): address for member_id, address in result['members'].items()}
        except (KeyError, AttributeError, TypeError, ValueError) as e:
            raise CoordinationServiceRejectedError(f"Unexpected membership response: {result}") from e

    def _url(self, endpoint: NodeAddress) -> str:
        return self.base_url or f"http://{endpoint.client_address}"

    async def _request(self, method: str, url: str, payload: Dict[str, Any] = None,
                       parse: bool = False) -> Dict[str, Any]:
        """Any 2xx status acknowledges the call; the body is read only when ``parse`` is set"""
        self.logger.debug(f"{method} {url}")
        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method,
                    url,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if 200 <= response.status < 300:
                        if not parse:
                            return {}
                        return await response.json(content_type=None)
                    error_text = await response.text()
                    raise CoordinationServiceRejectedError(
                        f"{method} {url} failed with status {response.status}: {error_text}"
                    )

        except asyncio.TimeoutError as e:
            raise CoordinationServiceTimeoutError(
                f"{method} {url} timed out after {self.timeout}s"
            ) from e
        except aiohttp.ClientError as e:
            raise CoordinationServiceError(f"{method} {url} failed: {e}") from e
        except ValueError as e:
            raise CoordinationServiceRejectedError(f"{method} {url} returned malformed JSON: {e}") from e


def build_coordination_client(config: DeploymentConfig) -> CoordinationClient:
    """Create the control client selected by the deployment config"""
    if config.control_client == "http":
        return HttpCoordinationClient(config.control_url, timeout=config.coordination_timeout)
    return KeeperCommandClient(config.clickhouse_binary, timeout=config.coordination_timeout)
