"""Tests for server list parsing and resolution."""

from __future__ import annotations

import pytest

from updatectl.errors import EmptyServerList, MalformedServerSpec, UnknownServer
from updatectl.models.server import LocalHost, RemoteHost, Server
from updatectl.services.registry import ServerRegistry, parse_server_spec, parse_servers
from tests.mock_executor import make_settings


# ── single entries ───────────────────────────────────────────────────────

class TestParseServerSpec:
    def test_named_remote(self):
        s = parse_server_spec("web:admin@10.0.0.5")
        assert s.name == "web"
        assert s.connection == RemoteHost(user="admin", host="10.0.0.5")

    def test_bare_remote_named_after_host(self):
        s = parse_server_spec("root@nas.lan")
        assert s.name == "nas.lan"
        assert s.connection.ssh_target == "root@nas.lan"

    def test_named_local(self):
        s = parse_server_spec("box:local", local_display="this machine")
        assert s.name == "box"
        assert s.is_local
        assert s.display_host == "this machine"

    def test_localhost_keyword(self):
        s = parse_server_spec("box:localhost")
        assert isinstance(s.connection, LocalHost)

    def test_bare_local_uses_configured_name(self):
        s = parse_server_spec("local", local_name="hal")
        assert s.name == "hal"
        assert s.is_local

    def test_whitespace_is_trimmed(self):
        s = parse_server_spec("  web : admin@h1 ")
        assert s.name == "web"
        assert s.connection.host == "h1"

    @pytest.mark.parametrize(
        "entry",
        ["web", "web:admin", "web:@host", "web:admin@", "a:b:c@d", ":admin@h", ""],
    )
    def test_malformed(self, entry):
        with pytest.raises(MalformedServerSpec):
            parse_server_spec(entry)


class TestParseServers:
    def test_order_is_preserved(self):
        servers = parse_servers("b:u@h2,a:u@h1,c:local")
        assert [s.name for s in servers] == ["b", "a", "c"]

    def test_later_duplicate_wins(self):
        servers = parse_servers("web:u@old,web:u@new")
        assert len(servers) == 1
        assert servers[0].connection.host == "new"

    def test_empty_items_skipped(self):
        assert [s.name for s in parse_servers("a:u@h,, ,b:local")] == ["a", "b"]

    def test_one_bad_entry_fails_the_list(self):
        with pytest.raises(MalformedServerSpec):
            parse_servers("a:u@h,broken")


# ── registry ─────────────────────────────────────────────────────────────

class TestServerRegistry:
    @pytest.fixture
    def registry(self):
        return ServerRegistry.from_settings(make_settings())

    def test_all_in_configuration_order(self, registry):
        assert registry.names() == ["web", "db", "nas"]
        assert len(registry) == 3
        assert "db" in registry

    def test_resolve_configured_name(self, registry):
        assert registry.resolve("db").connection.host == "10.0.0.6"

    def test_resolve_local_keyword_before_lookup(self):
        reg = ServerRegistry.from_settings(
            make_settings(update_servers="local:admin@10.9.9.9", update_local_name="me"),
        )
        s = reg.resolve("local")
        assert s.is_local
        assert s.name == "me"

    def test_resolve_ad_hoc_spec(self, registry):
        s = registry.resolve("ops@203.0.113.7")
        assert s.name == "203.0.113.7"
        assert not s.is_local

    @pytest.mark.parametrize("spec", ["ops@203.0.113.7", "mail:root@203.0.113.7"])
    def test_ad_hoc_spec_refused_when_disallowed(self, registry, spec):
        with pytest.raises(UnknownServer):
            registry.resolve(spec, allow_adhoc=False)

    def test_configured_and_local_resolve_when_ad_hoc_disallowed(self, registry):
        assert registry.resolve("web", allow_adhoc=False).name == "web"
        assert registry.resolve("localhost", allow_adhoc=False).is_local

    def test_resolve_unknown(self, registry):
        with pytest.raises(UnknownServer) as exc:
            registry.resolve("mail")
        assert str(exc.value) == "Unknown server: mail"

    def test_resolve_many_dedupes_in_request_order(self, registry):
        targets = registry.resolve_many("nas,web,nas")
        assert [t.name for t in targets] == ["nas", "web"]

    def test_resolve_many_empty(self, registry):
        with pytest.raises(EmptyServerList):
            registry.resolve_many(" , ")

    def test_unset_means_local_only(self):
        reg = ServerRegistry.from_settings(make_settings(update_servers=""))
        [only] = reg.all()
        assert only.is_local
        assert only.name == "localhost"

    def test_empty_registry_has_no_targets(self):
        with pytest.raises(EmptyServerList):
            ServerRegistry([]).all()

    def test_server_str(self):
        assert str(Server.remote("web", "admin", "h1")) == "web (admin@h1)"
