"""Tests for aivory_monitor.config."""

from __future__ import annotations

import dataclasses
import re
from pathlib import Path

import pytest

from aivory_monitor.config import (
    AIVORY_API_KEY_ENV,
    AIVORY_BACKEND_URL_ENV,
    AIVORY_DEBUG_ENV,
    AIVORY_ENVIRONMENT_ENV,
    AIVORY_MAX_COLLECTION_SIZE_ENV,
    AIVORY_MAX_DEPTH_ENV,
    AIVORY_MAX_STRING_LENGTH_ENV,
    AIVORY_SAMPLING_RATE_ENV,
    DEFAULT_BACKEND_URL,
    AgentConfig,
    runtime_info,
    should_sample,
)

_ALL_ENV = (
    AIVORY_API_KEY_ENV,
    AIVORY_BACKEND_URL_ENV,
    AIVORY_DEBUG_ENV,
    AIVORY_ENVIRONMENT_ENV,
    AIVORY_MAX_COLLECTION_SIZE_ENV,
    AIVORY_MAX_DEPTH_ENV,
    AIVORY_MAX_STRING_LENGTH_ENV,
    AIVORY_SAMPLING_RATE_ENV,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ALL_ENV:
        monkeypatch.delenv(name, raising=False)


def _never_called() -> float:
    raise AssertionError("rng must not be consulted")


class TestDefaults:
    def test_defaults(self) -> None:
        config = AgentConfig()
        assert config.api_key == ""
        assert config.backend_url == DEFAULT_BACKEND_URL == "wss://api.aivory.net/ws/agent"
        assert config.environment == "production"
        assert config.sampling_rate == 1.0
        assert config.max_capture_depth == 10
        assert config.max_string_length == 1000
        assert config.max_collection_size == 100
        assert config.debug is False
        assert config.hostname

    def test_agent_id_format(self) -> None:
        assert re.fullmatch(r"agent-[0-9a-f]{1,12}-[0-9a-f]{8}", AgentConfig().agent_id)

    def test_agent_ids_are_unique(self) -> None:
        assert AgentConfig().agent_id != AgentConfig().agent_id


class TestFromEnv:
    """Environment loading."""

    def test_reads_all_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(AIVORY_API_KEY_ENV, " secret ")
        monkeypatch.setenv(AIVORY_BACKEND_URL_ENV, "ws://localhost:19999/ws/agent")
        monkeypatch.setenv(AIVORY_ENVIRONMENT_ENV, "staging")
        monkeypatch.setenv(AIVORY_SAMPLING_RATE_ENV, "0.25")
        monkeypatch.setenv(AIVORY_MAX_DEPTH_ENV, "4")
        monkeypatch.setenv(AIVORY_MAX_STRING_LENGTH_ENV, "64")
        monkeypatch.setenv(AIVORY_MAX_COLLECTION_SIZE_ENV, "8")
        monkeypatch.setenv(AIVORY_DEBUG_ENV, "true")

        config = AgentConfig.from_env()

        assert config.api_key == "secret"
        assert config.backend_url == "ws://localhost:19999/ws/agent"
        assert config.environment == "staging"
        assert config.sampling_rate == 0.25
        assert config.max_capture_depth == 4
        assert config.max_string_length == 64
        assert config.max_collection_size == 8
        assert config.debug is True

    def test_invalid_values_fall_back(
        self, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        monkeypatch.setenv(AIVORY_SAMPLING_RATE_ENV, "often")
        monkeypatch.setenv(AIVORY_MAX_DEPTH_ENV, "deep")
        monkeypatch.setenv(AIVORY_DEBUG_ENV, "maybe")

        config = AgentConfig.from_env()

        assert config.sampling_rate == 1.0
        assert config.max_capture_depth == 10
        assert config.debug is False
        assert f"Invalid {AIVORY_SAMPLING_RATE_ENV}" in caplog.text

    def test_out_of_range_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(AIVORY_SAMPLING_RATE_ENV, "1.5")
        monkeypatch.setenv(AIVORY_MAX_DEPTH_ENV, "-3")

        config = AgentConfig.from_env()

        assert config.sampling_rate == 1.0
        assert config.max_capture_depth == 0

    @pytest.mark.parametrize("raw", ["nan", "inf", "-0.5"])
    def test_non_fraction_rate_keeps_default(self, monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
        monkeypatch.setenv(AIVORY_SAMPLING_RATE_ENV, raw)
        assert AgentConfig.from_env().sampling_rate == 1.0

    def test_false_words_disable_debug(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(AIVORY_DEBUG_ENV, " OFF ")
        assert AgentConfig.from_env().debug is False

    def test_blank_values_use_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(AIVORY_BACKEND_URL_ENV, "   ")
        monkeypatch.setenv(AIVORY_ENVIRONMENT_ENV, "")
        config = AgentConfig.from_env()
        assert config.backend_url == DEFAULT_BACKEND_URL
        assert config.environment == "production"


class TestFromDict:
    def test_coerces_values(self) -> None:
        config = AgentConfig.from_dict(
            {"api_key": "k", "sampling_rate": "0.5", "max_capture_depth": "3", "debug": "yes"}
        )
        assert config.api_key == "k"
        assert config.sampling_rate == 0.5
        assert config.max_capture_depth == 3
        assert config.debug is True

    def test_ignores_unknown_and_uncoercible(self) -> None:
        config = AgentConfig.from_dict({"bogus": 1, "max_string_length": "long", "sampling_rate": None})
        assert config.max_string_length == 1000
        assert config.sampling_rate == 1.0

    def test_limits_share_env_minimums(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(AIVORY_MAX_STRING_LENGTH_ENV, "0")
        from_env = AgentConfig.from_env()
        from_dict = AgentConfig.from_dict(
            {"max_string_length": 0, "max_capture_depth": -1, "max_collection_size": -5}
        )
        assert from_env.max_string_length == from_dict.max_string_length == 1
        assert from_dict.max_capture_depth == 0
        assert from_dict.max_collection_size == 0


class TestFromYaml:
    def test_loads_file(self, tmp_path: Path) -> None:
        path = tmp_path / "aivory.yaml"
        path.write_text("api_key: from-yaml\nenvironment: qa\nmax_capture_depth: 2\n", encoding="utf-8")

        config = AgentConfig.from_yaml(path)

        assert config.api_key == "from-yaml"
        assert config.environment == "qa"
        assert config.max_capture_depth == 2

    def test_env_overrides_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "aivory.yaml"
        path.write_text("api_key: from-yaml\nenvironment: qa\n", encoding="utf-8")
        monkeypatch.setenv(AIVORY_ENVIRONMENT_ENV, "prod-eu")

        assert AgentConfig.from_yaml(path).environment == "prod-eu"
        assert AgentConfig.from_yaml(path, allow_env_override=False).environment == "qa"

    def test_missing_file_uses_defaults(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        config = AgentConfig.from_yaml(tmp_path / "missing.yaml")
        assert config.environment == "production"
        assert "not found" in caplog.text

    def test_non_mapping_uses_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "aivory.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        assert AgentConfig.from_yaml(path).api_key == ""


class TestMutableContext:
    """Custom context and user replacement."""

    def test_settings_are_read_only(self) -> None:
        config = AgentConfig(api_key="k")
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.api_key = "other"  # type: ignore[misc]
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.sampling_rate = 0.0  # type: ignore[misc]
        assert config.api_key == "k"

    def test_frozen_config_still_accepts_context_and_user(self) -> None:
        config = AgentConfig()
        config.set_custom_context({"release": "1.2.3"})
        config.set_user(id="u1")
        assert config.custom_context == {"release": "1.2.3"}
        assert config.user == {"id": "u1"}
        config.custom_context["release"] = "changed"
        assert config.get_custom_context() == {"release": "1.2.3"}

    def test_context_is_replaced_wholesale(self) -> None:
        config = AgentConfig()
        config.set_custom_context({"a": 1, 2: "b"})
        config.set_custom_context({"c": 3})
        assert config.get_custom_context() == {"c": 3}

    def test_context_keys_are_strings(self) -> None:
        config = AgentConfig()
        config.set_custom_context({2: "b"})
        assert config.get_custom_context() == {"2": "b"}

    def test_getters_return_copies(self) -> None:
        config = AgentConfig()
        config.set_custom_context({"a": 1})
        config.get_custom_context()["a"] = 99
        config.set_user(id="u1")
        config.get_user()["id"] = "other"
        assert config.get_custom_context() == {"a": 1}
        assert config.get_user() == {"id": "u1"}

    def test_user_keeps_only_given_fields(self) -> None:
        config = AgentConfig()
        config.set_user(id="u1", email="a@example.com", username="ann")
        config.set_user(email="b@example.com")
        assert config.get_user() == {"email": "b@example.com"}


class TestShouldSample:
    def test_full_rate_never_draws(self) -> None:
        assert should_sample(AgentConfig(sampling_rate=1.0), _never_called) is True

    def test_zero_rate_never_draws(self) -> None:
        assert should_sample(AgentConfig(sampling_rate=0.0), _never_called) is False

    def test_partial_rate_compares_draw(self) -> None:
        config = AgentConfig(sampling_rate=0.5)
        assert should_sample(config, lambda: 0.4) is True
        assert should_sample(config, lambda: 0.6) is False
        assert should_sample(config, lambda: 0.5) is False


class TestRuntimeInfo:
    def test_keys(self) -> None:
        info = runtime_info()
        assert info["runtime"] == "python"
        assert set(info) == {"runtime", "runtimeVersion", "platform", "arch"}
