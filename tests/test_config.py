"""Tests for config loading, validation and updates."""

import json

import pytest

from walletguard.config import DEFAULT_CONFIG, ConfigStore, GuardConfig, merge_config
from walletguard.errors import ConfigError, IntegrityError
from walletguard.integrity import IntegrityGuard
from walletguard.state import Identity


SECRET = "config-test-secret"


def _store(tmp_path, secret=None) -> ConfigStore:
    return ConfigStore(tmp_path, IntegrityGuard(tmp_path, secret=secret))


class TestMerge:
    def test_partial_section_keeps_other_defaults(self):
        merged = merge_config(DEFAULT_CONFIG, {"limits": {"dailyMax": 500}})
        assert merged["limits"]["dailyMax"] == 500
        assert merged["limits"]["perTransaction"] == 50
        assert merged["cooldown"] == DEFAULT_CONFIG["cooldown"]

    def test_defaults_are_not_mutated(self):
        merge_config(DEFAULT_CONFIG, {"limits": {"dailyMax": 1}})
        assert DEFAULT_CONFIG["limits"]["dailyMax"] == 200


class TestGuardConfig:
    def test_defaults(self):
        config = GuardConfig.default()
        assert config.per_transaction_micros == 50_000_000
        assert config.daily_max_micros == 200_000_000
        assert config.cooldown_seconds == 30
        assert config.code_expiry_seconds == 300
        assert config.code_length == 6
        assert config.max_attempts == 3
        assert config.anomaly_trigger == 3
        assert config.anomaly_window_seconds == 60
        assert config.authorized_senders == ()

    def test_authorized_senders_parsed(self):
        doc = merge_config(
            DEFAULT_CONFIG, {"authorizedSenders": [{"platform": "telegram", "id": "42"}]}
        )
        config = GuardConfig.from_dict(doc)
        assert config.is_authorized(Identity("telegram", "42"))
        assert not config.is_authorized(Identity("telegram", "43"))

    @pytest.mark.parametrize(
        "override",
        [
            {"limits": {"perTransaction": "fifty"}},
            {"limits": {"dailyMax": -1}},
            {"limits": {"dailyMax": float("inf")}},
            {"cooldown": {"betweenTransactions": True}},
            {"confirmation": {"codeLength": 0}},
            {"confirmation": {"codeLength": 6.5}},
            {"confirmation": {"maxAttempts": 0}},
            {"freezeOnAnomalies": {"rapidRequests": 0}},
            {"authorizedSenders": "alice"},
            {"authorizedSenders": [{"platform": "imessage"}]},
        ],
    )
    def test_invalid_values_rejected(self, override):
        with pytest.raises(ConfigError):
            GuardConfig.from_dict(merge_config(DEFAULT_CONFIG, override))


class TestConfigStore:
    def test_missing_file_yields_defaults(self, tmp_path):
        store = _store(tmp_path)
        assert not store.exists()
        assert store.load() == GuardConfig.default()

    def test_init_writes_defaults_once(self, tmp_path):
        store = _store(tmp_path)
        assert store.init() is True
        assert json.loads(store.path.read_text()) == DEFAULT_CONFIG
        assert store.init() is False

    def test_file_permissions_are_private(self, tmp_path):
        store = _store(tmp_path)
        store.init()
        assert (store.path.stat().st_mode & 0o777) == 0o600

    def test_partial_file_merged_over_defaults(self, tmp_path):
        (tmp_path / "config.json").write_text(json.dumps({"limits": {"dailyMax": 75}}))
        config = _store(tmp_path).load()
        assert config.daily_max_micros == 75_000_000
        assert config.per_transaction_micros == 50_000_000

    def test_invalid_json_raises_config_error(self, tmp_path):
        (tmp_path / "config.json").write_text("{not json")
        with pytest.raises(ConfigError, match="not valid JSON"):
            _store(tmp_path).load()

    def test_save_rejects_invalid_document(self, tmp_path):
        store = _store(tmp_path)
        with pytest.raises(ConfigError):
            store.save({"limits": {"dailyMax": -5}})
        assert not store.exists()

    def test_set_value_coerces_numbers(self, tmp_path):
        store = _store(tmp_path)
        store.init()
        assert store.set_value("limits.dailyMax", "500") == 500
        assert store.set_value("limits.perTransaction", "12.5") == 12.5
        config = store.load()
        assert config.daily_max_micros == 500_000_000
        assert config.per_transaction_micros == 12_500_000

    def test_set_value_coerces_booleans(self, tmp_path):
        store = _store(tmp_path)
        assert store.set_value("confirmation.requiredForAllSends", "false") is False
        assert store.load_document()["confirmation"]["requiredForAllSends"] is False

    @pytest.mark.parametrize("key", ["limits.bogus", "nosuch.key", "limits", "authorizedSenders"])
    def test_set_value_rejects_unknown_keys(self, tmp_path, key):
        with pytest.raises(ConfigError):
            _store(tmp_path).set_value(key, "1")

    def test_set_value_rejects_invalid_value(self, tmp_path):
        store = _store(tmp_path)
        store.init()
        with pytest.raises(ConfigError):
            store.set_value("limits.dailyMax", "lots")
        assert store.load().daily_max_micros == 200_000_000

    def test_signed_on_save_and_checked_on_load(self, tmp_path):
        store = _store(tmp_path, secret=SECRET)
        store.init()
        assert store.integrity.verify("config.json")

        doc = json.loads(store.path.read_text())
        doc["limits"]["dailyMax"] = 1_000_000
        store.path.write_text(json.dumps(doc, indent=2) + "\n")
        with pytest.raises(IntegrityError):
            store.load()
