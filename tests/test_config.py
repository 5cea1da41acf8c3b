"""Unit tests for configuration loading, environment overrides and validation."""

import logging
from pathlib import Path

import pytest

from cloudflare_ddns.cli import (
    CloudflareConfig,
    Config,
    ConfigInvalid,
    DomainTarget,
    apply_env_overrides,
    load_config,
    validate_config,
)

FULL_CONFIG = """
cloudflare:
  api_token: "token-from-file"
  zone_id: "zone123"
domains:
  - name: home.example.com
    record_types: A
    ttl: 120
    proxied: true
  - name: nas.example.com
interval: 600
verbose: yes
log_file: /var/log/cf-ddns.log
"""


def write_config(tmp_path: Path, text: str) -> str:
    config_file = tmp_path / "cf-ddns.yaml"
    config_file.write_text(text, encoding="utf-8")
    return str(config_file)


class TestLoadConfig:
    """Tests for YAML config loading."""

    def test_load_full_config(self, tmp_path: Path) -> None:
        config = load_config(write_config(tmp_path, FULL_CONFIG), environ={})

        assert config.cloudflare == CloudflareConfig(api_token="token-from-file", zone_id="zone123")
        assert config.domains == (
            DomainTarget(name="home.example.com", record_types="A", ttl=120, proxied=True),
            DomainTarget(name="nas.example.com", record_types="", ttl=0, proxied=False),
        )
        assert config.interval == 600
        assert config.verbose is True
        assert config.log_file == "/var/log/cf-ddns.log"

    def test_empty_file_gives_empty_config(self, tmp_path: Path) -> None:
        config = load_config(write_config(tmp_path, ""), environ={})

        assert config == Config()

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigInvalid, match="failed to parse config file"):
            load_config(write_config(tmp_path, "domains: [unclosed\n"), environ={})

    def test_non_mapping_document(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigInvalid, match="must contain a mapping"):
            load_config(write_config(tmp_path, "- just\n- a list\n"), environ={})

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigInvalid, match="failed to read config file"):
            load_config(str(tmp_path / "missing.yaml"), environ={})

    def test_non_numeric_ttl(self, tmp_path: Path) -> None:
        text = "domains:\n  - name: a.example.com\n    ttl: forever\n"
        with pytest.raises(ConfigInvalid, match=r"domain\[0\]\.ttl"):
            load_config(write_config(tmp_path, text), environ={})

    def test_fractional_ttl_is_rejected(self, tmp_path: Path) -> None:
        text = "domains:\n  - name: a.example.com\n    ttl: 300.9\n"
        with pytest.raises(ConfigInvalid, match=r"domain\[0\]\.ttl: expected an integer"):
            load_config(write_config(tmp_path, text), environ={})

    def test_domain_entry_must_be_mapping(self, tmp_path: Path) -> None:
        text = "domains:\n  - a.example.com\n"
        with pytest.raises(ConfigInvalid, match=r"domain\[0\]"):
            load_config(write_config(tmp_path, text), environ={})


class TestEnvOverrides:
    """Tests for CF_* environment overrides."""

    def test_env_values_replace_file_values(self) -> None:
        config = Config(
            cloudflare=CloudflareConfig(api_token="file-token", zone_id="file-zone"),
            interval=60,
        )

        result = apply_env_overrides(
            config,
            {"CF_API_TOKEN": "env-token", "CF_ZONE_ID": "env-zone", "CF_DDNS_INTERVAL": "900"},
        )

        assert result.cloudflare.api_token == "env-token"
        assert result.cloudflare.zone_id == "env-zone"
        assert result.interval == 900

    def test_empty_env_values_are_ignored(self) -> None:
        config = Config(cloudflare=CloudflareConfig(api_key="key", email="me@example.com"))

        result = apply_env_overrides(config, {"CF_API_KEY": "", "CF_API_EMAIL": "  "})

        assert result.cloudflare == config.cloudflare

    def test_load_config_reads_process_environment(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setenv("CF_API_TOKEN", "from-env")

        config = load_config(write_config(tmp_path, FULL_CONFIG))

        assert config.cloudflare.api_token == "from-env"

    def test_bad_interval_env(self) -> None:
        with pytest.raises(ConfigInvalid, match="CF_DDNS_INTERVAL"):
            apply_env_overrides(Config(), {"CF_DDNS_INTERVAL": "hourly"})


class TestValidateConfig:
    """Tests for validate_config."""

    def make(self, **overrides) -> Config:
        values = {
            "cloudflare": CloudflareConfig(api_token="tok"),
            "domains": (DomainTarget(name="home.example.com", record_types="", ttl=0),),
        }
        values.update(overrides)
        return Config(**values)

    def test_defaults_are_applied(self) -> None:
        config = validate_config(self.make())

        assert config.domains[0].record_types == "BOTH"
        assert config.domains[0].ttl == 300

    def test_record_types_case_insensitive(self) -> None:
        config = validate_config(
            self.make(domains=(DomainTarget(name="home.example.com", record_types="aaaa"),))
        )

        assert config.domains[0].record_types == "AAAA"

    def test_key_and_email_accepted(self) -> None:
        validate_config(self.make(cloudflare=CloudflareConfig(api_key="k", email="e@example.com")))

    def test_key_without_email_rejected(self) -> None:
        with pytest.raises(ConfigInvalid, match="api_token"):
            validate_config(self.make(cloudflare=CloudflareConfig(api_key="k")))

    def test_no_domains_rejected(self) -> None:
        with pytest.raises(ConfigInvalid, match="at least one domain"):
            validate_config(self.make(domains=()))

    def test_all_errors_reported_together(self, caplog) -> None:
        config = self.make(
            cloudflare=CloudflareConfig(),
            domains=(
                DomainTarget(name="", record_types="A"),
                DomainTarget(name="x.example.com", record_types="CNAME"),
            ),
            interval=-1,
        )

        with caplog.at_level(logging.ERROR):
            with pytest.raises(ConfigInvalid) as excinfo:
                validate_config(config)

        message = str(excinfo.value)
        assert "api_token" in message
        assert "domain[0]: name is required" in message
        assert "domain[1]: record_types must be" in message
        assert "interval must not be negative" in message
        assert len(caplog.records) == 4

    def test_original_config_is_not_mutated(self) -> None:
        original = self.make()

        validate_config(original)

        assert original.domains[0].ttl == 0
        assert original.domains[0].record_types == ""
