from pathlib import Path

import pytest
from pydantic import ValidationError

from account_operator.config.base import decamelize_config, parse_providers
from account_operator.config.settings import (
    AccountPoolConfig,
    OperatorSettings,
    load_settings,
)

CONFIG = """
application:
  logLevel: DEBUG
  maxConcurrentReconciles: 4
aws:
  accountLimit: 50
  accessKeyId: "{{ from env TEST_OPERATOR_ACCESS_KEY }}"
  secretAccessKey: "{{ from env TEST_OPERATOR_SECRET_KEY }}"
featureFlags:
  optInRegions: true
  optInRegionList:
    - af-south-1
accountPools:
  hivePool:
    default: true
    createOnDemand: true
  smallPool: {}
"""


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG)
    return path


class TestLoadSettings:
    def test_yaml_is_normalized(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """
        Arrange: a camelCase yaml config referencing environment variables
        Act: load the settings
        Assert: fields are populated and pool names keep their spelling
        """
        monkeypatch.setenv("TEST_OPERATOR_ACCESS_KEY", "AKIATESTKEY")
        monkeypatch.setenv("TEST_OPERATOR_SECRET_KEY", "test-operator-secret")

        settings = load_settings(str(config_file))

        assert settings.application.log_level == "DEBUG"
        assert settings.application.max_concurrent_reconciles == 4
        assert settings.aws.account_limit == 50
        assert settings.aws.access_key_id == "AKIATESTKEY"
        assert settings.feature_flags.opt_in_region_list == ["af-south-1"]
        assert set(settings.account_pools) == {"hivePool", "smallPool"}
        assert settings.default_pool_name == "hivePool"
        assert settings.get_sensitive_fields_data() == {
            "AKIATESTKEY",
            "test-operator-secret",
        }

    def test_missing_env_provider_falls_back_to_default(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("TEST_OPERATOR_ACCESS_KEY", raising=False)
        monkeypatch.delenv("TEST_OPERATOR_SECRET_KEY", raising=False)

        settings = load_settings(str(config_file))

        assert settings.aws.access_key_id is None
        assert settings.get_sensitive_fields_data() == set()

    def test_environment_overrides_yaml(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("OPERATOR__AWS__ACCOUNT_LIMIT", "70")

        settings = load_settings(str(config_file))

        assert settings.aws.account_limit == 70

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        settings = load_settings(str(tmp_path / "absent.yaml"))

        assert settings.aws.account_limit == 4800
        assert settings.account_pools == {}


class TestPools:
    def test_exactly_one_default_pool_is_required(self) -> None:
        with pytest.raises(ValidationError):
            OperatorSettings(
                account_pools={
                    "a": AccountPoolConfig(default=True),
                    "b": AccountPoolConfig(default=True),
                }
            )
        with pytest.raises(ValidationError):
            OperatorSettings(account_pools={"a": AccountPoolConfig()})

    def test_default_pool_resolution(self) -> None:
        settings = OperatorSettings(
            account_pools={
                "main": AccountPoolConfig(default=True),
                "other": AccountPoolConfig(create_on_demand=True),
            }
        )

        assert settings.is_default_pool("")
        assert settings.is_default_pool("main")
        assert not settings.is_default_pool("other")
        assert settings.pool_config("").create_on_demand is False
        assert settings.pool_config("other").create_on_demand is True

    def test_unconfigured_default_pool_creates_on_demand(self) -> None:
        settings = OperatorSettings()

        assert settings.pool_config("").create_on_demand
        assert not settings.pool_config("unknown").create_on_demand


class TestConfigHelpers:
    def test_decamelize_keeps_mapping_keys(self) -> None:
        config = decamelize_config(
            OperatorSettings,
            {"accountPools": {"myPool": {"createOnDemand": True}}},
        )

        assert config == {"account_pools": {"myPool": {"create_on_demand": True}}}

    def test_parse_providers_resolves_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SOME_VALUE", "resolved")

        parsed = parse_providers(
            {"aws": {"key": "{{ from env SOME_VALUE }}", "plain": "value"}}
        )

        assert parsed == {"aws": {"key": "resolved", "plain": "value"}}
