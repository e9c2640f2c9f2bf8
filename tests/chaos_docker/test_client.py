"""Tests for docker daemon connection management"""

import threading
from unittest.mock import MagicMock, patch

import pytest
import requests

from chaos_docker.client import DaemonConnection, get_connection
from chaos_docker.config import EngineConfig
from chaos_docker.exceptions import ConnectionError as DaemonConnectionError
from tests.utils import api_error


def _api(version, ping_error=None):
    api = MagicMock()
    api.api_version = version
    if ping_error is not None:
        api.ping.side_effect = ping_error
    return api


@pytest.fixture
def api_client_cls():
    with patch("chaos_docker.client.docker.APIClient") as cls:
        yield cls


class TestDaemonConnection:
    def test_connects_with_configured_version(self, api_client_cls):
        api = _api("1.41")
        api_client_cls.return_value = api

        connection = DaemonConnection("tcp://10.0.0.1:2375", EngineConfig(request_timeout=30))
        assert connection.api is api

        kwargs = api_client_cls.call_args.kwargs
        assert kwargs["base_url"] == "tcp://10.0.0.1:2375"
        assert kwargs["version"] == "1.41"
        api.ping.assert_called_once()
        assert api.timeout == 30

    def test_environment_default_when_endpoint_empty(self, api_client_cls):
        api_client_cls.return_value = _api("1.41")
        with patch("chaos_docker.client.docker.utils.kwargs_from_env", return_value={"base_url": "unix://env.sock"}):
            DaemonConnection("").connect()
        assert api_client_cls.call_args.kwargs["base_url"] == "unix://env.sock"

    def test_connect_is_cached(self, api_client_cls):
        api_client_cls.return_value = _api("1.41")
        connection = DaemonConnection("tcp://h:2375")
        first = connection.connect()
        second = connection.connect()
        assert first is second
        assert api_client_cls.call_count == 1
        assert first.ping.call_count == 1

    def test_downgrades_to_advertised_version(self, api_client_cls):
        error = api_error(400, "client version 1.41 is too new", headers={"Api-Version": "1.24"})
        too_new = _api("1.41", ping_error=error)
        downgraded = _api("1.24")
        api_client_cls.side_effect = [too_new, downgraded]

        connection = DaemonConnection("tcp://h:2375")
        assert connection.connect() is downgraded
        assert api_client_cls.call_args_list[1].kwargs["version"] == "1.24"
        too_new.close.assert_called_once()
        downgraded.ping.assert_called_once()

    def test_version_parsed_from_error_message(self, api_client_cls):
        error = api_error(400, "client version 1.41 is too new. Maximum supported API version is 1.30")
        error.response.headers = {}
        api_client_cls.side_effect = [_api("1.41", ping_error=error), _api("1.30")]

        connection = DaemonConnection("tcp://h:2375")
        connection.connect()
        assert connection.api_version == "1.30"

    def test_never_upgrades(self, api_client_cls):
        error = api_error(500, "daemon busy", headers={"Api-Version": "1.45"})
        api = _api("1.41", ping_error=error)
        api_client_cls.return_value = api

        with pytest.raises(DaemonConnectionError, match="daemon advertises 1.45"):
            DaemonConnection("tcp://h:2375").connect()
        assert api_client_cls.call_count == 1
        api.close.assert_called_once()

    def test_retries_only_once_after_downgrade(self, api_client_cls):
        first_error = api_error(400, "too new", headers={"Api-Version": "1.24"})
        second_error = api_error(400, "still failing", headers={"Api-Version": "1.20"})
        downgraded = _api("1.24", second_error)
        api_client_cls.side_effect = [_api("1.41", first_error), downgraded]

        with pytest.raises(DaemonConnectionError, match="after downgrade to 1.24"):
            DaemonConnection("tcp://h:2375").connect()
        assert api_client_cls.call_count == 2
        downgraded.close.assert_called_once()

    def test_fails_without_version_information(self, api_client_cls):
        error = requests.exceptions.ConnectionError("connection refused")
        api = _api("1.41", ping_error=error)
        api_client_cls.return_value = api

        with pytest.raises(DaemonConnectionError, match="ping docker daemon failed"):
            DaemonConnection("tcp://h:2375").connect()
        api.close.assert_called_once()

    def test_ping_uses_short_timeout(self, api_client_cls):
        api = _api("1.41")
        seen = {}
        api.ping.side_effect = lambda: seen.setdefault("timeout", api.timeout)
        api_client_cls.return_value = api

        DaemonConnection("tcp://h:2375", EngineConfig(ping_timeout=2.0, request_timeout=60)).connect()
        assert seen["timeout"] == 2.0
        assert api.timeout == 60

    def test_concurrent_first_use_negotiates_once(self, api_client_cls):
        api_client_cls.return_value = _api("1.41")
        connection = DaemonConnection("tcp://h:2375")
        threads = [threading.Thread(target=connection.connect) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert api_client_cls.call_count == 1


class TestGetConnection:
    def test_returns_shared_connection_per_endpoint(self, api_client_cls):
        api_client_cls.side_effect = lambda **kwargs: _api("1.41")
        first = get_connection("tcp://a:2375")
        second = get_connection("tcp://a:2375")
        other = get_connection("tcp://b:2375")
        assert first is second
        assert first is not other
        assert api_client_cls.call_count == 2

    def test_existing_connection_is_not_revalidated(self, api_client_cls):
        api = _api("1.41")
        api_client_cls.return_value = api
        get_connection("tcp://a:2375")
        api.ping.side_effect = requests.exceptions.ConnectionError("gone")
        assert get_connection("tcp://a:2375").api is api

    def test_failed_connection_is_not_cached(self, api_client_cls):
        api_client_cls.side_effect = [
            _api("1.41", ping_error=requests.exceptions.ConnectionError("refused")),
            _api("1.41"),
        ]
        with pytest.raises(DaemonConnectionError):
            get_connection("tcp://a:2375")
        assert get_connection("tcp://a:2375").is_connected
