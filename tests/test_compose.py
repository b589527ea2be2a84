"""Tests for settings resolution and registry construction."""

import pytest

from claude_proxy.compose import BUILTIN_PROVIDERS, build_settings, load_config_file
from claude_proxy.gateway.errors import ConfigError


class TestBuildSettingsDefaults:
    def test_builtin_providers_registered(self):
        settings = build_settings(environ={})

        assert settings.host == "127.0.0.1"
        assert settings.port == 8082
        assert settings.debug_dir is None
        assert settings.registry.names() == sorted(BUILTIN_PROVIDERS)
        assert settings.registry.default_provider == "ollama"

    def test_zai_uses_openai_adapter(self):
        registry = build_settings(environ={}).registry

        assert registry.resolve_provider("zai").kind == "openai"
        assert registry.resolve_provider("glm").kind == "glm"

    def test_default_timeouts(self):
        provider = build_settings(environ={}).registry.resolve_provider("ollama")

        assert provider.first_byte_timeout == 60.0
        assert provider.idle_timeout == 60.0


class TestBuildSettingsEnvironment:
    def test_provider_env_overrides(self):
        environ = {
            "OPENAI_API_KEY": "sk-env",
            "OPENAI_BASE_URL": "https://proxy.example/v1/",
            "OPENAI_MODEL": "gpt-4o",
            "MODEL_MAPPING_OPENAI": "claude-3-opus:gpt-4o,claude-3-haiku:gpt-4o-mini",
            "OPENAI_IDLE_TIMEOUT": "15",
        }

        provider = build_settings(environ=environ).registry.resolve_provider("openai")

        assert provider.api_key == "sk-env"
        assert provider.base_url == "https://proxy.example/v1"
        assert provider.model == "gpt-4o"
        assert provider.model_mapping["claude-3-haiku"] == "gpt-4o-mini"
        assert provider.idle_timeout == 15.0

    def test_server_env(self):
        environ = {
            "PROXY_HOST": "0.0.0.0",
            "PROXY_PORT": "9000",
            "DEFAULT_PROVIDER": "openai",
            "CLAUDE_PROXY_DEBUG_DIR": "/tmp/debug",
        }

        settings = build_settings(environ=environ)

        assert settings.host == "0.0.0.0"
        assert settings.port == 9000
        assert settings.registry.default_provider == "openai"
        assert settings.debug_dir == "/tmp/debug"

    def test_port_falls_back_to_port_variable(self):
        assert build_settings(environ={"PORT": "3000"}).port == 3000

    def test_proxy_port_beats_port(self):
        settings = build_settings(environ={"PROXY_PORT": "9000", "PORT": "3000"})

        assert settings.port == 9000

    def test_arguments_beat_environment(self):
        environ = {"PROXY_PORT": "9000", "DEFAULT_PROVIDER": "openai"}

        settings = build_settings(port=7000, default_provider="gemini", environ=environ)

        assert settings.port == 7000
        assert settings.registry.default_provider == "gemini"

    def test_unknown_default_provider_fails_at_startup(self):
        with pytest.raises(ConfigError, match="Unknown provider 'bedrock'"):
            build_settings(environ={"DEFAULT_PROVIDER": "bedrock"})

    def test_bad_port(self):
        with pytest.raises(ConfigError, match="port"):
            build_settings(environ={"PROXY_PORT": "eighty"})

    @pytest.mark.parametrize("value", ["soon", "0", "-1"])
    def test_bad_timeout(self, value):
        with pytest.raises(ConfigError, match="ollama.first_byte_timeout"):
            build_settings(environ={"OLLAMA_FIRST_BYTE_TIMEOUT": value})


class TestConfigFile:
    def test_file_values_below_environment(self, tmp_path):
        config = tmp_path / "proxy.yaml"
        config.write_text(
            "port: 9100\n"
            "default_provider: vllm\n"
            "providers:\n"
            "  vllm:\n"
            "    base_url: http://gpu-box:8000/v1\n"
            "    model: mistral\n"
            "    model_mapping:\n"
            "      claude-3-haiku: mistral-small\n"
            "  ollama:\n"
            "    model: llama3\n"
        )

        settings = build_settings(config_file=str(config), environ={"OLLAMA_MODEL": "phi3"})

        assert settings.port == 9100
        assert settings.registry.default_provider == "vllm"
        vllm = settings.registry.resolve_provider("vllm")
        assert vllm.base_url == "http://gpu-box:8000/v1"
        assert vllm.model_mapping == {"claude-3-haiku": "mistral-small"}
        # Environment wins over the file
        assert settings.registry.resolve_provider("ollama").model == "phi3"

    def test_extra_provider_needs_kind(self, tmp_path):
        config = tmp_path / "proxy.yaml"
        config.write_text(
            "providers:\n"
            "  OpenRouter:\n"
            "    kind: openai\n"
            "    base_url: https://openrouter.test/api/v1\n"
            "    model: llama-3-70b\n"
            "    api_key: sk-or\n"
        )

        registry = build_settings(config_file=str(config), environ={}).registry

        provider = registry.resolve_provider("openrouter")
        assert provider.kind == "openai"
        assert provider.api_key == "sk-or"

    def test_extra_provider_without_kind(self, tmp_path):
        config = tmp_path / "proxy.yaml"
        config.write_text("providers:\n  custom:\n    base_url: http://x\n    model: m\n")

        with pytest.raises(ConfigError, match="needs a kind"):
            build_settings(config_file=str(config), environ={})

    def test_config_path_from_environment(self, tmp_path):
        config = tmp_path / "proxy.yaml"
        config.write_text("host: 0.0.0.0\n")

        settings = build_settings(environ={"CLAUDE_PROXY_CONFIG": str(config)})

        assert settings.host == "0.0.0.0"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Cannot read config file"):
            load_config_file(str(tmp_path / "missing.yaml"), {})

    def test_invalid_yaml(self, tmp_path):
        config = tmp_path / "proxy.yaml"
        config.write_text("providers: [unclosed\n")

        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config_file(str(config), {})

    def test_non_mapping(self, tmp_path):
        config = tmp_path / "proxy.yaml"
        config.write_text("- just\n- a list\n")

        with pytest.raises(ConfigError, match="must contain a mapping"):
            load_config_file(str(config), {})

    def test_no_file_configured(self):
        assert load_config_file(None, {}) == {}
