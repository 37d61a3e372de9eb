"""
Unit tests for environment configuration.
"""

import pytest

from backend.patron_server.config import (
    LedgerConfig,
    ServerConfig,
    StorageConfig,
    StoreBackend,
    SyncConfig,
)


class TestServerConfig:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PACKAGE_ID", "0xpkg")
        monkeypatch.setenv("SUI_NETWORK", "mainnet")
        monkeypatch.setenv("STORE_BACKEND", "memory")
        monkeypatch.setenv("SYNC_PAGE_SIZE", "20")
        monkeypatch.setenv("SYNC_SECRET", "s3cret")
        monkeypatch.setenv("CORS_ORIGINS", "https://a.test, https://b.test")

        config = ServerConfig.from_env()

        assert config.ledger.package_id == "0xpkg"
        assert config.ledger.endpoint == "https://fullnode.mainnet.sui.io"
        assert config.storage.backend is StoreBackend.MEMORY
        assert config.sync.page_size == 20
        assert config.sync.secret == "s3cret"
        assert config.http.cors_origins == ("https://a.test", "https://b.test")

    def test_package_id_required(self, monkeypatch):
        monkeypatch.delenv("PACKAGE_ID", raising=False)
        with pytest.raises(ValueError, match="PACKAGE_ID"):
            ServerConfig.from_env()

    def test_invalid_backend(self, monkeypatch):
        monkeypatch.setenv("STORE_BACKEND", "postgres")
        with pytest.raises(ValueError, match="STORE_BACKEND"):
            StorageConfig.from_env()

    def test_page_size_bounds(self):
        config = ServerConfig(
            ledger=LedgerConfig(package_id="0xpkg"), sync=SyncConfig(page_size=0)
        )
        with pytest.raises(ValueError, match="SYNC_PAGE_SIZE"):
            config.validate()

    def test_unknown_network_without_url(self):
        config = ServerConfig(ledger=LedgerConfig(network="moon", package_id="0xpkg"))
        with pytest.raises(ValueError, match="SUI_NETWORK"):
            config.validate()

    def test_explicit_rpc_url_wins(self):
        config = LedgerConfig(network="moon", rpc_url="http://localhost:9000")
        assert config.endpoint == "http://localhost:9000"
