"""Tests for conf — config persistence and settings resolution."""

import json
import os

from rawusb import conf
from rawusb.conf import Settings, load_config, save_config


class TestConfigPersistence:

    def test_missing_file_is_empty(self):
        assert load_config() == {}

    def test_corrupt_file_is_empty(self):
        with open(conf.CONFIG_PATH, 'w') as f:
            f.write('{not json')
        assert load_config() == {}

    def test_save_then_load(self):
        save_config({'read_timeout_ms': 250})
        assert load_config() == {'read_timeout_ms': 250}

    def test_save_creates_directory(self, monkeypatch, tmp_path):
        nested = tmp_path / 'a' / 'b'
        monkeypatch.setattr(conf, 'CONFIG_DIR', str(nested))
        monkeypatch.setattr(conf, 'CONFIG_PATH', str(nested / 'config.json'))
        save_config({'auto_detach_policy': 'error'})
        assert os.path.isfile(nested / 'config.json')


class TestSettingsDefaults:

    def test_defaults(self):
        s = Settings(config={})
        assert s.read_timeout_ms == 0
        assert s.write_timeout_ms == 0
        assert s.auto_detach_policy == 'warn'
        assert s.strict_endpoints is False

    def test_from_config_file(self):
        save_config({'read_timeout_ms': 100, 'write_timeout_ms': 200,
                     'auto_detach_policy': 'error', 'strict_endpoints': True})
        s = Settings()
        assert (s.read_timeout_ms, s.write_timeout_ms) == (100, 200)
        assert s.auto_detach_policy == 'error'
        assert s.strict_endpoints is True

    def test_repr(self):
        assert "auto_detach_policy='warn'" in repr(Settings(config={}))


class TestEnvironmentOverrides:

    def test_env_beats_config(self, monkeypatch):
        monkeypatch.setenv(conf.ENV_READ_TIMEOUT, '500')
        monkeypatch.setenv(conf.ENV_AUTO_DETACH, 'ERROR')
        s = Settings(config={'read_timeout_ms': 100, 'auto_detach_policy': 'warn'})
        assert s.read_timeout_ms == 500
        assert s.auto_detach_policy == 'error'

    def test_strict_endpoints_env(self, monkeypatch):
        monkeypatch.setenv(conf.ENV_STRICT_ENDPOINTS, 'yes')
        assert Settings(config={}).strict_endpoints is True
        monkeypatch.setenv(conf.ENV_STRICT_ENDPOINTS, 'off')
        assert Settings(config={'strict_endpoints': True}).strict_endpoints is False

    def test_invalid_values_fall_back(self, monkeypatch, caplog):
        monkeypatch.setenv(conf.ENV_WRITE_TIMEOUT, 'soon')
        monkeypatch.setenv(conf.ENV_READ_TIMEOUT, '-5')
        monkeypatch.setenv(conf.ENV_AUTO_DETACH, 'ignore')
        monkeypatch.setenv(conf.ENV_STRICT_ENDPOINTS, 'maybe')
        with caplog.at_level('WARNING', logger='rawusb.conf'):
            s = Settings(config={})
        assert s.write_timeout_ms == 0
        assert s.read_timeout_ms == 0
        assert s.auto_detach_policy == 'warn'
        assert s.strict_endpoints is False
        assert len(caplog.records) == 4

    def test_empty_env_means_unset(self, monkeypatch):
        monkeypatch.setenv(conf.ENV_READ_TIMEOUT, '')
        assert Settings(config={'read_timeout_ms': 42}).read_timeout_ms == 42


class TestSetters:

    def test_set_timeouts_persists(self):
        s = Settings(config={})
        s.set_timeouts(10, 20)
        assert (s.read_timeout_ms, s.write_timeout_ms) == (10, 20)
        with open(conf.CONFIG_PATH) as f:
            saved = json.load(f)
        assert saved == {'read_timeout_ms': 10, 'write_timeout_ms': 20}

    def test_set_timeouts_without_persist(self):
        s = Settings(config={})
        s.set_timeouts(10, 20, persist=False)
        assert load_config() == {}

    def test_set_policy_keeps_other_keys(self):
        save_config({'read_timeout_ms': 7})
        s = Settings()
        s.set_auto_detach_policy('error')
        assert load_config() == {'read_timeout_ms': 7, 'auto_detach_policy': 'error'}

    def test_set_invalid_policy_falls_back(self):
        s = Settings(config={'auto_detach_policy': 'error'})
        s.set_auto_detach_policy('bogus', persist=False)
        assert s.auto_detach_policy == 'warn'
