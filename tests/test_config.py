"""
Tests for TOML configuration loading and validation.
"""

from pathlib import Path

import pytest

from automixer.config import Config, ConfigError
from automixer.types import DecisionType, TransitionType


class TestConfig:
    """Test defaults, loading and bounds checking."""

    def test_defaults(self):
        config = Config.defaults()
        assert config.decision_type is DecisionType.DECISION_TREE
        assert config.default_transition is TransitionType.BEATMATCH
        assert config.get("transitions", "crossfade_bars") == 3
        assert config["player"]["schedule_ahead_time"] == 0.5

    def test_missing_file_uses_defaults(self, tmp_path):
        config = Config.load(str(tmp_path / "nope.toml"))
        assert config.get("analysis", "min_beats") == 2

    def test_env_path(self, tmp_path, monkeypatch):
        path = tmp_path / "env.toml"
        path.write_text('[decision]\npolicy = "random"\n')
        monkeypatch.setenv("AUTOMIXER_CONFIG_PATH", str(path))
        assert Config.load().decision_type is DecisionType.RANDOM

    def test_load_fills_missing_params(self, tmp_path):
        path = tmp_path / "automixer.toml"
        path.write_text(
            '[decision]\npolicy = "fifty_fifty"\ndefault_transition = "Slam"\n'
            '[transitions]\ncrossfade_bars = 4\n'
        )
        config = Config.load(str(path))
        assert config.decision_type is DecisionType.FIFTY_FIFTY
        assert config.default_transition is TransitionType.SLAM
        assert config.get("transitions", "crossfade_bars") == 4
        assert config.get("transitions", "fade_in_bars") == 2
        assert config.get("history", "db_path") == ""

    def test_out_of_bounds(self):
        with pytest.raises(ConfigError):
            Config({"transitions": {"crossfade_bars": 100}})

    def test_non_numeric(self):
        with pytest.raises(ConfigError):
            Config({"player": {"schedule_ahead_time": "soon"}})

    def test_unknown_policy(self):
        with pytest.raises(ConfigError):
            Config({"decision": {"policy": "coin_flip"}})

    def test_unknown_transition(self):
        with pytest.raises(ConfigError):
            Config({"decision": {"default_transition": "scratch"}})

    def test_malformed_toml(self, tmp_path):
        path = tmp_path / "broken.toml"
        path.write_text("[decision\npolicy = ")
        with pytest.raises(ConfigError):
            Config.load(str(path))

    def test_shipped_config_is_valid(self):
        config = Config.load(str(Path(__file__).parents[1] / "configs" / "automixer.toml"))
        assert config.decision_type in DecisionType
