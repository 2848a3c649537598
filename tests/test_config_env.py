"""Tests for config.py environment variable and YAML support."""

from pathlib import Path

import pytest

from mongo_lens.config import Config, _parse_bool, database_from_uri

ENV_VARS = [
    "MONGO_LENS_URI",
    "MONGO_LENS_CONNECT_TIMEOUT_MS",
    "MONGO_LENS_DISABLE_TOKENS",
    "MONGO_LENS_TOKEN_TTL",
    "MONGO_LENS_SAMPLE_SIZE",
    "MONGO_LENS_FIND_LIMIT",
    "MONGO_LENS_EXPORT_LIMIT",
    "MONGO_LENS_CACHE_TTL",
    "MONGO_LENS_HOST",
    "MONGO_LENS_PORT",
    "MONGO_LENS_LOG_LEVEL",
]


class TestParseBool:
    """Tests for _parse_bool function."""

    @pytest.mark.parametrize("value", ["1", "true", "TRUE", " yes ", "on"])
    def test_truthy(self, value: str) -> None:
        assert _parse_bool(value) is True

    @pytest.mark.parametrize("value", ["", "0", "false", "off", "nope"])
    def test_falsy(self, value: str) -> None:
        assert _parse_bool(value) is False


class TestDatabaseFromUri:
    """Tests for database_from_uri."""

    @pytest.mark.parametrize(
        "uri,expected",
        [
            ("mongodb://localhost:27017/shop", "shop"),
            ("mongodb://user:pw@h1,h2/shop?replicaSet=rs0", "shop"),
            ("mongodb+srv://cluster.example.net/analytics", "analytics"),
            ("mongodb://localhost:27017", "admin"),
            ("mongodb://localhost:27017/", "admin"),
            ("memory:///shop", "shop"),
        ],
    )
    def test_database_name(self, uri: str, expected: str) -> None:
        assert database_from_uri(uri) == expected


class TestConfigFromEnv:
    """Tests for Config.from_env()."""

    def test_defaults_when_no_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Default values are used when no env vars are set."""
        for var in ENV_VARS:
            monkeypatch.delenv(var, raising=False)

        config = Config.from_env()

        assert config.mongo.uri == "mongodb://localhost:27017"
        assert config.mongo.database_name == "admin"
        assert config.safety.disable_destructive_tokens is False
        assert config.safety.token_ttl_seconds == 300
        assert config.defaults.find_limit == 10
        assert config.server.port == 3000
        assert config.logging.level == "INFO"

    def test_reads_connection(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MONGO_LENS_URI", "mongodb://db.internal:27018/shop")
        monkeypatch.setenv("MONGO_LENS_CONNECT_TIMEOUT_MS", "250")

        config = Config.from_env()

        assert config.mongo.database_name == "shop"
        assert config.mongo.connect_timeout_ms == 250

    def test_reads_safety_and_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MONGO_LENS_DISABLE_TOKENS", "true")
        monkeypatch.setenv("MONGO_LENS_TOKEN_TTL", "60")
        monkeypatch.setenv("MONGO_LENS_SAMPLE_SIZE", "20")
        monkeypatch.setenv("MONGO_LENS_EXPORT_LIMIT", "50")
        monkeypatch.setenv("MONGO_LENS_CACHE_TTL", "0")

        config = Config.from_env()

        assert config.safety.disable_destructive_tokens is True
        assert config.safety.token_ttl_seconds == 60
        assert config.defaults.schema_sample_size == 20
        assert config.defaults.export_limit == 50
        assert config.defaults.cache_ttl_seconds == 0

    def test_reads_server_and_logging(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MONGO_LENS_HOST", "0.0.0.0")
        monkeypatch.setenv("MONGO_LENS_PORT", "9000")
        monkeypatch.setenv("MONGO_LENS_LOG_LEVEL", "verbose")

        config = Config.from_env()

        assert config.server.host == "0.0.0.0"
        assert config.server.port == 9000
        assert config.logging.level == "verbose"


class TestConfigFromYaml:
    """Tests for Config.from_yaml()."""

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        config = Config.from_yaml(tmp_path / "absent.yaml")
        assert config == Config()

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "lens.yaml"
        path.write_text("")
        assert Config.from_yaml(path) == Config()

    def test_sections(self, tmp_path: Path) -> None:
        path = tmp_path / "lens.yaml"
        path.write_text(
            "mongo:\n"
            "  uri: mongodb://localhost:27017/inventory\n"
            "safety:\n"
            "  disable_destructive_tokens: true\n"
            "defaults:\n"
            "  find_limit: 25\n"
            "logging:\n"
            "  level: DEBUG\n"
        )

        config = Config.from_yaml(path)

        assert config.mongo.database_name == "inventory"
        assert config.mongo.connect_timeout_ms == 5000
        assert config.safety.disable_destructive_tokens is True
        assert config.safety.token_ttl_seconds == 300
        assert config.defaults.find_limit == 25
        assert config.defaults.export_limit == 1000
        assert config.logging.level == "DEBUG"

    def test_uri_expanded_from_environment(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("LENS_TEST_URI", "mongodb://secret-host/reports")
        path = tmp_path / "lens.yaml"
        path.write_text("mongo:\n  uri: ${LENS_TEST_URI}\n")

        config = Config.from_yaml(path)

        assert config.mongo.uri == "mongodb://secret-host/reports"

    def test_unset_variable_falls_back_to_default(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("LENS_TEST_URI", raising=False)
        path = tmp_path / "lens.yaml"
        path.write_text("mongo:\n  uri: ${LENS_TEST_URI}\n")

        assert Config.from_yaml(path).mongo.uri == "mongodb://localhost:27017"

    @pytest.mark.parametrize(
        "raw,expected",
        [('"false"', False), ("'no'", False), ('"yes"', True), ("false", False)],
    )
    def test_quoted_safety_flag(self, tmp_path: Path, raw: str, expected: bool) -> None:
        path = tmp_path / "lens.yaml"
        path.write_text(f"safety:\n  disable_destructive_tokens: {raw}\n")

        assert Config.from_yaml(path).safety.disable_destructive_tokens is expected
