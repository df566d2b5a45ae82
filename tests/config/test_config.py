"""HeapSpec Configuration Tests — CONF-001 through CONF-004."""

import json
import logging

import pytest

from heapspec.config import (
    HeapspecConfig, find_config, load_config, get_config, set_config,
)


@pytest.fixture
def fresh_config():
    yield
    set_config(None)


class TestDefaults:
    """CONF-001: Defaults when no file is present."""

    def test_defaults(self):
        config = HeapspecConfig()
        assert config.default_fuel == 10_000
        assert config.solver_timeout_ms == 10_000
        assert config.unknown_is_failure is True
        assert config.check_instances is True
        assert config.log_level == ""

    def test_no_file(self, tmp_path):
        if find_config(str(tmp_path)) is not None:
            pytest.skip("a config file exists above the temporary directory")
        assert load_config(start_dir=str(tmp_path)) == HeapspecConfig()

    def test_missing_path(self, tmp_path):
        assert load_config(str(tmp_path / "absent.yml")) == HeapspecConfig()


class TestLoading:
    """CONF-002: YAML and JSON files."""

    def test_yaml(self, tmp_path):
        path = tmp_path / ".heapspecrc.yml"
        path.write_text("default_fuel: 500\nsolver_timeout_ms: 250\ncheck_instances: false\n")
        config = load_config(str(path))
        assert config.default_fuel == 500
        assert config.solver_timeout_ms == 250
        assert config.check_instances is False
        assert config.unknown_is_failure is True

    def test_json(self, tmp_path):
        path = tmp_path / ".heapspecrc.json"
        path.write_text(json.dumps({"unknown_is_failure": False, "log_level": "debug"}))
        config = load_config(str(path))
        assert config.unknown_is_failure is False
        assert config.log_level == "debug"

    def test_malformed_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / ".heapspecrc.yml"
        path.write_text("default_fuel: [unclosed\n")
        assert load_config(str(path)) == HeapspecConfig()

    def test_malformed_json_gives_defaults(self, tmp_path):
        path = tmp_path / ".heapspecrc.json"
        path.write_text("{not json")
        assert load_config(str(path)) == HeapspecConfig()

    def test_non_mapping_gives_defaults(self, tmp_path):
        path = tmp_path / ".heapspecrc.yml"
        path.write_text("- 1\n- 2\n")
        assert load_config(str(path)) == HeapspecConfig()

    def test_negative_fuel_rejected(self, tmp_path):
        path = tmp_path / ".heapspecrc.yml"
        path.write_text("default_fuel: -3\n")
        with pytest.raises(ValueError):
            load_config(str(path))


class TestDiscovery:
    """CONF-003: The nearest file wins, walking up directories."""

    def test_found_in_parent(self, tmp_path):
        (tmp_path / ".heapspecrc.yml").write_text("default_fuel: 7\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_config(str(nested)) == str(tmp_path / ".heapspecrc.yml")
        assert load_config(start_dir=str(nested)).default_fuel == 7

    def test_nearest_wins(self, tmp_path):
        (tmp_path / ".heapspecrc.yml").write_text("default_fuel: 7\n")
        nested = tmp_path / "a"
        nested.mkdir()
        (nested / ".heapspecrc.json").write_text('{"default_fuel": 9}')
        assert load_config(start_dir=str(nested)).default_fuel == 9

    def test_yml_preferred_over_json(self, tmp_path):
        (tmp_path / ".heapspecrc.json").write_text('{"default_fuel": 9}')
        (tmp_path / ".heapspecrc.yml").write_text("default_fuel: 7\n")
        assert find_config(str(tmp_path)).endswith(".heapspecrc.yml")


class TestActive:
    """CONF-004: The process-wide active configuration."""

    def test_set_and_get(self, fresh_config):
        config = HeapspecConfig(default_fuel=42)
        set_config(config)
        assert get_config() is config

    def test_reset_reloads(self, fresh_config):
        set_config(HeapspecConfig(default_fuel=42))
        set_config(None)
        assert get_config() is not None

    def test_log_level_applied(self, fresh_config):
        logger = logging.getLogger("heapspec")
        previous = logger.level
        try:
            set_config(HeapspecConfig(log_level="debug"))
            assert logger.level == logging.DEBUG
        finally:
            logger.setLevel(previous)
