"""Tests for configuration loading."""

from pathlib import Path

import pytest
import yaml

from intent_engine.config import (
    DEFAULT_CONFIG,
    ConfigurationError,
    GateSettings,
    OutcomeSettings,
    PreferenceSettings,
    get_gate_settings,
    get_outcome_settings,
    get_preference_settings,
    get_signal_lexicon,
    get_storage_path,
    load_config,
)
from intent_engine.signals import NEW_CREATE_PATTERNS, detect_signals


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host environment overrides out of config tests."""
    for name in ("INTENT_ENGINE_CONFIG_PATH", "INTENT_ENGINE_DB_PATH", "INTENT_ENGINE_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    """Tests for default configuration."""

    def test_defaults_without_file(self, tmp_path):
        """No file means the defaults."""
        config = load_config(base_dir=tmp_path)
        assert config == DEFAULT_CONFIG

    def test_defaults_not_mutated(self, tmp_path, monkeypatch):
        """Overrides never leak into DEFAULT_CONFIG."""
        monkeypatch.setenv("INTENT_ENGINE_DB_PATH", str(tmp_path / "x.db"))
        load_config(base_dir=tmp_path)
        assert DEFAULT_CONFIG["storage"]["path"] is None

    def test_default_settings_match_dataclasses(self):
        """Default sections build the default settings objects."""
        assert get_preference_settings(DEFAULT_CONFIG) == PreferenceSettings()
        assert get_outcome_settings(DEFAULT_CONFIG) == OutcomeSettings()
        assert get_gate_settings(DEFAULT_CONFIG) == GateSettings()


class TestConfigFile:
    """Tests for YAML file loading."""

    def test_default_file_in_base_dir(self, tmp_path):
        """intent-engine.yaml in base_dir is merged."""
        (tmp_path / "intent-engine.yaml").write_text(
            yaml.safe_dump({"outcomes": {"max_outcomes": 5}})
        )
        config = load_config(base_dir=tmp_path)
        assert config["outcomes"]["max_outcomes"] == 5
        assert config["outcomes"]["ttl_days"] == 30

    def test_explicit_path(self, tmp_path):
        """An explicit path wins over the default filename."""
        custom = tmp_path / "custom.yaml"
        custom.write_text(yaml.safe_dump({"gate": {"max_action_age_seconds": 10}}))
        config = load_config(str(custom), base_dir=tmp_path)
        assert config["gate"]["max_action_age_seconds"] == 10

    def test_env_config_path(self, tmp_path, monkeypatch):
        """INTENT_ENGINE_CONFIG_PATH is honored."""
        custom = tmp_path / "env.yaml"
        custom.write_text(yaml.safe_dump({"logging": {"level": "DEBUG"}}))
        monkeypatch.setenv("INTENT_ENGINE_CONFIG_PATH", str(custom))
        assert load_config(base_dir=tmp_path)["logging"]["level"] == "DEBUG"

    def test_relative_path_resolves_against_base_dir(self, tmp_path):
        """Relative explicit paths are resolved from base_dir."""
        (tmp_path / "rel.yaml").write_text(yaml.safe_dump({"storage": {"backend": "memory"}}))
        config = load_config("rel.yaml", base_dir=tmp_path)
        assert config["storage"]["backend"] == "memory"

    def test_missing_explicit_file_uses_defaults(self, tmp_path):
        """A missing explicit file logs and falls back."""
        config = load_config(str(tmp_path / "nope.yaml"), base_dir=tmp_path)
        assert config == DEFAULT_CONFIG

    def test_invalid_explicit_yaml_raises(self, tmp_path):
        """Broken YAML in an explicit file is an error."""
        bad = tmp_path / "bad.yaml"
        bad.write_text("storage: [unclosed")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config(str(bad), base_dir=tmp_path)

    def test_non_mapping_explicit_file_raises(self, tmp_path):
        """A YAML list is not a config."""
        bad = tmp_path / "list.yaml"
        bad.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            load_config(str(bad), base_dir=tmp_path)

    def test_invalid_default_yaml_is_ignored(self, tmp_path):
        """Broken default file is ignored, not fatal."""
        (tmp_path / "intent-engine.yaml").write_text("storage: [unclosed")
        assert load_config(base_dir=tmp_path) == DEFAULT_CONFIG


class TestEnvOverrides:
    """Tests for environment variable overrides."""

    def test_db_path_override(self, tmp_path, monkeypatch):
        """INTENT_ENGINE_DB_PATH sets storage.path."""
        monkeypatch.setenv("INTENT_ENGINE_DB_PATH", str(tmp_path / "state.db"))
        config = load_config(base_dir=tmp_path)
        assert get_storage_path(config) == tmp_path / "state.db"

    def test_log_level_override_uppercased(self, tmp_path, monkeypatch):
        """INTENT_ENGINE_LOG_LEVEL is normalized to upper case."""
        monkeypatch.setenv("INTENT_ENGINE_LOG_LEVEL", "debug")
        assert load_config(base_dir=tmp_path)["logging"]["level"] == "DEBUG"


class TestSettings:
    """Tests for typed settings accessors."""

    def test_unknown_key_raises(self):
        """Typos in a section are reported."""
        with pytest.raises(ConfigurationError, match="Unknown GateSettings keys"):
            get_gate_settings({"gate": {"max_age": 3}})

    def test_derived_seconds(self):
        """Day/hour settings convert to seconds."""
        prefs = PreferenceSettings(ttl_days=1, cleanup_interval_hours=2)
        assert prefs.ttl_seconds == 86400
        assert prefs.cleanup_interval_seconds == 7200
        assert OutcomeSettings(ttl_days=2).ttl_seconds == 172800

    def test_storage_path_none_by_default(self):
        """No configured path means the adapter default."""
        assert get_storage_path(DEFAULT_CONFIG) is None

    def test_storage_path_expands_user(self):
        """~ is expanded."""
        path = get_storage_path({"storage": {"path": "~/state.db"}})
        assert path == Path("~/state.db").expanduser()


class TestSignalLexicon:
    """Tests for the signals section."""

    def test_default_section_keeps_builtin_patterns(self):
        """Empty lists leave the built-in lexicon as is."""
        lexicon = get_signal_lexicon(DEFAULT_CONFIG)
        assert len(lexicon.new_create) == len(NEW_CREATE_PATTERNS)

    def test_extra_pattern_extends_lexicon(self):
        """A configured pattern is detected alongside the built-ins."""
        lexicon = get_signal_lexicon(
            {"signals": {"new_create": [r"bài\s+hoàn\s+toàn\s+khác"]}}
        )
        assert len(lexicon.new_create) == len(NEW_CREATE_PATTERNS) + 1
        assert detect_signals("viết bài hoàn toàn khác", lexicon).is_explicit_new_create
        assert detect_signals("viết bài mới", lexicon).is_explicit_new_create

    def test_unknown_key_raises(self):
        """Typos in the signals section are reported."""
        with pytest.raises(ConfigurationError, match="Unknown signals keys"):
            get_signal_lexicon({"signals": {"new_creates": ["x"]}})

    def test_non_list_raises(self):
        """Each key takes a list of patterns."""
        with pytest.raises(ConfigurationError, match="must be a list"):
            get_signal_lexicon({"signals": {"transform_verbs": "shorten"}})

    def test_invalid_regex_raises(self):
        """A pattern that does not compile is a configuration error."""
        with pytest.raises(ConfigurationError, match="Invalid signal pattern"):
            get_signal_lexicon({"signals": {"transform_reference": ["(unclosed"]}})

    def test_loaded_from_file(self, tmp_path):
        """Patterns from the YAML file reach the lexicon."""
        (tmp_path / "intent-engine.yaml").write_text(
            yaml.safe_dump({"signals": {"transform_verbs": [r"\bcô\s+đọng\b"]}}),
            encoding="utf-8",
        )
        config = load_config(base_dir=tmp_path)
        lexicon = get_signal_lexicon(config)
        assert detect_signals("cô đọng", lexicon).is_ambiguous_transform
