"""Tests for configuration validation and parsing."""
import pytest

from api_profile import LEGACY_PROFILE, WIDGET_PROFILE
from config import JablotronConfig, arm_code_map, parse_index_mapping, validate_config
from errors import ConfigError
from zone_state import Section


def make_config(**overrides) -> JablotronConfig:
    values = dict(
        username="user@example.com",
        password="secret",
        arm_codes=arm_code_map(a="1111", b="2222", abc="3333"),
        disarm_code="9999",
    )
    values.update(overrides)
    return JablotronConfig(**values)


class TestCodeFor:
    """Tests for choosing the code to submit."""

    def test_arm_codes(self):
        config = make_config()
        assert config.code_for(Section.A, True) == "1111"
        assert config.code_for(Section.B, True) == "2222"
        assert config.code_for(Section.ABC, True) == "3333"

    def test_disarm_code(self):
        assert make_config().code_for(Section.B, False) == "9999"

    def test_missing_code(self):
        config = make_config(arm_codes=arm_code_map(a="1111"))
        with pytest.raises(ConfigError):
            config.code_for(Section.B, True)
        with pytest.raises(ConfigError):
            make_config(disarm_code="").code_for(Section.A, False)


class TestParseIndexMapping:
    """Tests for parsing the section index mapping option."""

    def test_parse(self):
        mapping = parse_index_mapping("A:2, B:1 ,abc:0")
        assert mapping == {Section.A: 2, Section.B: 1, Section.ABC: 0}

    def test_empty_entries_ignored(self):
        assert parse_index_mapping("A:0,,") == {Section.A: 0}

    @pytest.mark.parametrize("text", ["A2", "C:1", "A:x"])
    def test_invalid(self, text):
        with pytest.raises(ConfigError):
            parse_index_mapping(text)


class TestValidateConfig:
    """Tests for validate_config."""

    def test_valid(self):
        config = make_config()
        assert validate_config(config) is config

    def test_widget_profile_valid(self):
        validate_config(make_config(profile=WIDGET_PROFILE))

    @pytest.mark.parametrize(
        "overrides",
        [
            {"username": ""},
            {"password": ""},
            {"disarm_code": "12a4"},
            {"arm_codes": arm_code_map(a="abc")},
            {"poll_interval": 0},
            {"control_wait_interval": -1},
            {"control_wait_budget": 0},
            {"session_max_polls": -1},
            {"confirm_polls": -1},
        ],
    )
    def test_invalid(self, overrides):
        with pytest.raises(ConfigError):
            validate_config(make_config(**overrides))

    def test_mapping_missing_section(self):
        profile = LEGACY_PROFILE.with_section_index({Section.A: 0, Section.B: 1})
        with pytest.raises(ConfigError):
            validate_config(make_config(profile=profile))

    def test_mapping_duplicate_index(self):
        profile = LEGACY_PROFILE.with_section_index(
            {Section.A: 0, Section.B: 0, Section.ABC: 2}
        )
        with pytest.raises(ConfigError):
            validate_config(make_config(profile=profile))

    def test_mapping_negative_index(self):
        profile = LEGACY_PROFILE.with_section_index(
            {Section.A: -1, Section.B: 0, Section.ABC: 2}
        )
        with pytest.raises(ConfigError):
            validate_config(make_config(profile=profile))

    def test_no_codes_only_warns(self):
        config = make_config(arm_codes=arm_code_map(), disarm_code="")
        assert validate_config(config) is config
