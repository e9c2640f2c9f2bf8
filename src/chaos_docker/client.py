"""
Docker daemon connection management.

One connection per endpoint is created lazily, pinged with a short
timeout, and reused for the process lifetime. When the daemon rejects the
ping but advertises an older API version, the connection is downgraded to
that version and pinged once more. The version is never upgraded.
"""

import logging
import re
import threading
from typing import Dict, Optional

import docker
import requests
from docker.errors import DockerException
from packaging import version

from chaos_docker.config import EngineConfig
from chaos_docker.exceptions import ConnectionError as DaemonConnectionError

logger = logging.getLogger(__name__)

_VERSION_IN_MESSAGE = re.compile(r"[Mm]aximum supported API version is ([0-9.]+)")


def _advertised_version(error: Exception) -> Optional[str]:
    """Extract the API version the daemon advertised while rejecting a request."""
    response = getattr(error, "response", None)
    if response is not None and getattr(response, "headers", None):
        advertised = response.headers.get("Api-Version")
        if advertised:
            return advertised
    match = _VERSION_IN_MESSAGE.search(str(error))
    if match:
        return match.group(1)
    return None


def _is_older(candidate: str, current: str) -> bool:
    try:
        return version.parse(candidate) < version.parse(current)
    except version.InvalidVersion:
        logger.warning(f"Unparseable docker API version: {candidate!r} / {current!r}")
        return False


class DaemonConnection:
    """
    Lazily negotiated connection to one docker daemon endpoint.

    Attributes:
        endpoint: Daemon address; empty means the environment default
        config: Engine configuration supplying versions and timeouts
    """

    def __init__(self, endpoint: str = "", config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.endpoint = endpoint or self.config.endpoint
        self._api: Optional[docker.APIClient] = None
        self._lock = threading.Lock()

    @property
    def api(self) -> docker.APIClient:
        """The negotiated low-level docker client, connecting on first use."""
        return self.connect()

    @property
    def is_connected(self) -> bool:
        return self._api is not None

    @property
    def api_version(self) -> Optional[str]:
        return self._api.api_version if self._api is not None else None

    def connect(self) -> docker.APIClient:
        """
        Connect and negotiate on first call; afterwards return the cached client.

        Raises:
            ConnectionError: If the daemon cannot be reached
        """
        if self._api is None:
            with self._lock:
                if self._api is None:
                    self._api = self._negotiate()
        return self._api

    def _create_api(self, api_version: str) -> docker.APIClient:
        if self.endpoint:
            kwargs = {"base_url": self.endpoint}
        else:
            kwargs = docker.utils.kwargs_from_env()
        try:
            return docker.APIClient(
                version=api_version,
                timeout=self.config.request_timeout,
                **kwargs
            )
        except DockerException as e:
            raise DaemonConnectionError(
                f"cannot create docker client for {self.endpoint or 'environment default'}: {e}", e
            )

    def _ping(self, api: docker.APIClient) -> None:
        api.timeout = self.config.ping_timeout
        try:
            api.ping()
        finally:
            api.timeout = self.config.request_timeout

    def _negotiate(self) -> docker.APIClient:
        api = self._create_api(self.config.api_version)
        try:
            self._ping(api)
            logger.info(f"Connected to docker daemon {self.endpoint or '(env)'} with API {api.api_version}")
            return api
        except (DockerException, requests.exceptions.RequestException) as e:
            advertised = _advertised_version(e)
            if not advertised:
                api.close()
                raise DaemonConnectionError(f"ping docker daemon failed: {e}", e)
            if not _is_older(advertised, api.api_version):
                api.close()
                raise DaemonConnectionError(
                    f"ping docker daemon failed with API {api.api_version} "
                    f"(daemon advertises {advertised}): {e}", e
                )
            logger.warning(f"Downgrading docker API version from {api.api_version} to {advertised}")

        api.close()
        api = self._create_api(advertised)
        try:
            self._ping(api)
        except (DockerException, requests.exceptions.RequestException) as e:
            api.close()
            raise DaemonConnectionError(f"ping docker daemon failed after downgrade to {advertised}: {e}", e)
        logger.info(f"Connected to docker daemon {self.endpoint or '(env)'} with API {api.api_version}")
        return api


# Global connection cache, one entry per endpoint
_connections: Dict[str, DaemonConnection] = {}
_connections_lock = threading.Lock()


def get_connection(endpoint: str = "", config: Optional[EngineConfig] = None) -> DaemonConnection:
    """
    Get the shared, already negotiated connection for an endpoint.

    An existing connection is returned without re-validation.

    Args:
        endpoint: Daemon address; empty means the environment default
        config: Configuration used only when the connection is first created

    Raises:
        ConnectionError: If the first connection attempt fails
    """
    key = endpoint or (config.endpoint if config else "")
    connection = _connections.get(key)
    if connection is None:
        with _connections_lock:
            connection = _connections.get(key)
            if connection is None:
                connection = DaemonConnection(key, config)
                connection.connect()
                _connections[key] = connection
    return connection


def reset_connections() -> None:
    """Drop all cached connections."""
    with _connections_lock:
        for connection in _connections.values():
            if connection._api is not None:
                connection._api.close()
        _connections.clear()
