"""
Unit tests for netrauth.config and netrauth.core.logging modules.
"""

import pytest
import structlog
from structlog.testing import capture_logs

from netrauth.config import (
    ConfigFlags,
    InMemoryTrustPasswordStore,
    IpcCredentials,
    MachineIdentity,
    NetlogonConfig,
    TrustPasswordStore,
)
from netrauth.core.logging import REDACTED, configure_logging, scrub_secrets
from netrauth.core.types import NegotiateFlags, PasswordKind, TrustPassword


class TestNetlogonConfig:
    """Tests for the service flag word."""

    def test_defaults_enable_everything(self):
        config = NetlogonConfig.from_flags(0)
        assert config.use_secure_rpc
        assert config.verify_responses
        assert config.use_logon_ex

    @pytest.mark.parametrize(
        "flags,attribute",
        [
            (0x1, "disable_secure_rpc"),
            (0x2, "disable_response_verification"),
            (0x4, "disable_logon_ex"),
        ],
    )
    def test_each_bit(self, flags: int, attribute: str):
        config = NetlogonConfig.from_flags(flags)
        assert getattr(config, attribute)
        assert config.to_flags() == flags

    def test_unknown_bits_ignored(self):
        assert NetlogonConfig.from_flags(0x10) == NetlogonConfig()

    def test_proposed_flags(self):
        assert NetlogonConfig().proposed_flags() == 0x400041FF

    def test_proposed_flags_without_secure_rpc(self):
        flags = NetlogonConfig(disable_secure_rpc=True).proposed_flags()
        assert flags == 0x000041FF
        assert not flags & NegotiateFlags.SECURE_RPC

    def test_flag_values(self):
        assert int(ConfigFlags.DISABLE_SECURE_RPC) == 1
        assert int(ConfigFlags.DISABLE_LOGON_EX) == 4


class TestMachineIdentity:
    """Tests for local identity normalization."""

    def test_normalized(self):
        identity = MachineIdentity("ws01", "example", "Example.COM")
        assert identity.hostname == "WS01"
        assert identity.netbios_domain == "EXAMPLE"
        assert identity.fqdn_domain == "example.com"
        assert identity.account_name == "WS01$"

    def test_anonymous_ipc_by_default(self):
        identity = MachineIdentity("ws01", "example", "example.com")
        assert identity.ipc_credentials == IpcCredentials()

    @pytest.mark.parametrize("hostname", ["", "A" * 16])
    def test_invalid_hostname(self, hostname: str):
        with pytest.raises(ValueError):
            MachineIdentity(hostname, "example", "example.com")

    def test_ipc_password_hidden(self):
        assert "hunter2" not in repr(IpcCredentials("svc", "EXAMPLE", "hunter2"))


class TestInMemoryTrustPasswordStore:
    """Tests for the in-process trust password store."""

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryTrustPasswordStore(), TrustPasswordStore)

    def test_empty_store(self):
        assert InMemoryTrustPasswordStore().load() is None

    def test_load_returns_independent_copy(self):
        store = InMemoryTrustPasswordStore.from_plaintext("pw")
        copy = store.load()
        copy.wipe()
        assert bytes(store.load()) == "pw".encode("utf-16-le")

    def test_save_replaces_and_wipes_previous(self):
        original = TrustPassword.from_plaintext("pw")
        store = InMemoryTrustPasswordStore(password=original)
        store.save(TrustPassword.from_owf(bytes(16)))
        assert original.wiped
        assert store.kind is PasswordKind.OWF
        assert bytes(store.load()) == bytes(16)


class TestLogging:
    """Tests for structlog configuration."""

    def test_scrub_secrets(self):
        event = {"event": "x", "session_key": b"k", "password": "p", "server": "dc01"}
        scrubbed = scrub_secrets(None, "info", event)
        assert scrubbed["session_key"] == REDACTED
        assert scrubbed["password"] == REDACTED
        assert scrubbed["server"] == "dc01"

    def test_configure_logging_keeps_capture_working(self):
        try:
            configure_logging(json=True)
            with capture_logs() as logs:
                structlog.get_logger().info("config_check", nt_hash="00")
            assert logs[0]["event"] == "config_check"
        finally:
            structlog.reset_defaults()

    def test_processor_chain_includes_scrubber(self):
        try:
            configure_logging()
            assert scrub_secrets in structlog.get_config()["processors"]
        finally:
            structlog.reset_defaults()
