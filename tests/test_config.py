"""Tests for configuration parsing and merging."""

import pytest

from socks_relay.core.config import ClientConfig, Credentials, ServerConfig, load_config
from socks_relay.core.exceptions import ConfigError


def test_server_defaults():
    config = ServerConfig()
    assert (config.listen_host, config.listen_port) == ("127.0.0.1", 1080)
    assert config.connection_limit is None
    assert config.auth is None
    assert config.blacklist_defaults


def test_server_from_camel_case_mapping():
    config = ServerConfig.from_mapping(
        {
            "listenPort": 1081,
            "connectionLimit": 8,
            "blacklist": ["203.0.113.0/24"],
            "auth": {"username": "alice", "password": "wonderland"},
        }
    )
    assert config.listen_port == 1081
    assert config.connection_limit == 8
    assert config.blacklist == ("203.0.113.0/24",)
    assert config.auth == Credentials("alice", "wonderland")


def test_auth_false_disables_authentication():
    assert ServerConfig.from_mapping({"auth": False}).auth is None


@pytest.mark.parametrize(
    "mapping",
    [
        {"listenPort": 70000},
        {"connectionLimit": -1},
        {"auth": {"username": "alice"}},
        {"auth": "alice:wonderland"},
        {"auth": {"username": "", "password": "x"}},
        {"colour": "blue"},
        {"listenPort": 1, "listen_port": 2},
    ],
)
def test_invalid_server_options(mapping):
    with pytest.raises(ConfigError):
        ServerConfig.from_mapping(mapping)


def test_merge_skips_unset_overrides():
    base = ServerConfig(listen_port=2000, connection_limit=4)
    merged = base.merge(listen_port=None, connection_limit=16, listen_host="0.0.0.0")
    assert merged.listen_port == 2000
    assert merged.connection_limit == 16
    assert merged.listen_host == "0.0.0.0"
    assert base.connection_limit == 4


def test_client_from_mapping():
    config = ClientConfig.from_mapping({"proxyPort": 9050, "dnsLocal": True, "dnsStrict": True})
    assert config.proxy_port == 9050
    assert config.dns_local and config.dns_strict


def test_client_port_must_be_positive():
    with pytest.raises(ConfigError):
        ClientConfig(proxy_port=0)


def test_credentials_hide_password():
    assert "wonderland" not in repr(Credentials("alice", "wonderland"))


def test_load_config(tmp_path):
    path = tmp_path / "socks-relay.toml"
    path.write_text('[server]\nlistenPort = 1090\n\n[client]\nproxyPort = 1090\n')
    data = load_config(path)
    assert ServerConfig.from_mapping(data["server"]).listen_port == 1090
    assert ClientConfig.from_mapping(data["client"]).proxy_port == 1090


def test_load_config_errors(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.toml")
    broken = tmp_path / "broken.toml"
    broken.write_text("[server\n")
    with pytest.raises(ConfigError):
        load_config(broken)
